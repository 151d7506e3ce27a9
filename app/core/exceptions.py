from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.request_context import request_id_ctx_var


class DomainHTTPException(HTTPException):
    """HTTPException carrying a stable machine-readable error code."""

    def __init__(self, status_code: int, code: str, detail: Any = None) -> None:
        super().__init__(status_code=status_code, detail=detail)
        self.code = code


def _error_payload(code: str, message: str, detail):
    return {
        "error": {
            "code": code,
            "message": message,
            "detail": detail,
        },
        "detail": detail,
        "request_id": request_id_ctx_var.get(),
    }


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    code = getattr(exc, "code", None) or f"http_{exc.status_code}"
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(
            code=code,
            message=str(exc.detail),
            detail=exc.detail,
        ),
        headers=exc.headers,
    )


async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_payload(
            code="validation_error",
            message="Request validation failed",
            detail=jsonable_errors(exc),
        ),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    errors = []
    for error in exc.errors():
        item = {key: value for key, value in error.items() if key != "ctx"}
        if "ctx" in error:
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(item)
    return errors
