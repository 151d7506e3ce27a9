from fastapi import status

from app.core.exceptions import DomainHTTPException
from app.services.outcomes import (
    Failure,
    IdempotencyConflict,
    InvalidTransition,
    NotFound,
    SlotUnavailable,
    SpecialistNotLinked,
    ValidationFailure,
)

OUTCOME_STATUS_CODES: dict[type[Failure], int] = {
    SlotUnavailable: status.HTTP_409_CONFLICT,
    SpecialistNotLinked: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    IdempotencyConflict: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
    ValidationFailure: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def raise_for_outcome(outcome):
    """Return ``outcome`` unchanged unless it is a failure, which becomes an HTTP error."""
    if isinstance(outcome, Failure):
        raise DomainHTTPException(
            status_code=OUTCOME_STATUS_CODES.get(type(outcome), status.HTTP_400_BAD_REQUEST),
            code=outcome.code,
            detail=outcome.detail,
        )
    return outcome
