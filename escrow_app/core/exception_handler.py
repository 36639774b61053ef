import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import DomainError, InvariantViolation

logger = logging.getLogger(__name__)


class ValidationErrorHandler:
    async def __call__(self, request: Request, exc: RequestValidationError):
        errors = []

        for err in exc.errors():
            errors.append({
                "loc": err.get("loc"),
                "msg": str(err.get("msg")),
                "type": err.get("type"),
            })

        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": "Validation failed",
                "details": errors,
            },
        )


class DomainErrorHandler:
    async def __call__(self, request: Request, exc: DomainError):
        headers = {"Retry-After": "30"} if exc.retryable else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


class InvariantViolationHandler:
    async def __call__(self, request: Request, exc: InvariantViolation):
        logger.critical("Invariant violation on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "code": "INTERNAL_ERROR",
                "message": "Something went wrong on our end. Please try again.",
            },
        )
