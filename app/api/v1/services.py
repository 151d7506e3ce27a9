from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.service import ServiceResponse
from app.services.selection_service import services_for_categories

router = APIRouter(prefix="/services", tags=["services"])


@router.get("", response_model=list[ServiceResponse], status_code=status.HTTP_200_OK)
def list_services(
    categories: Annotated[list[str] | None, Query(alias="category")] = None,
    db: Session = Depends(get_db),
) -> list[ServiceResponse]:
    services = services_for_categories(db=db, categories=categories)
    return [ServiceResponse.model_validate(service) for service in services]
