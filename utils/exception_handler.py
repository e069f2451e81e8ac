import http
from typing import List, Dict, Any, Optional
from pydantic import ValidationError as PydanticValidationError
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

from logger import logger
from schema.base import GenericResponseModel


class NdrError(Exception):
    """Base class for every failure the NDR workflow reports to a caller."""

    status_code = http.HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data

    def to_response(self) -> GenericResponseModel:
        return GenericResponseModel(
            status_code=self.status_code,
            message=self.message,
            data=self.data if self.data is not None else {},
            status=False,
        )


class ValidationError(NdrError):
    """Malformed or missing input, rejected before the aggregate is read."""

    status_code = http.HTTPStatus.BAD_REQUEST


class NotFoundError(NdrError):
    status_code = http.HTTPStatus.NOT_FOUND


class PolicyViolation(NdrError):
    """Action not authorized for the reason code, attempt count or state."""

    status_code = http.HTTPStatus.BAD_REQUEST


class ConflictError(NdrError):
    """Optimistic version mismatch that outlived the write retries."""

    status_code = http.HTTPStatus.CONFLICT


class ExternalServiceError(NdrError):
    """The carrier API failed, timed out or answered with an error."""

    status_code = http.HTTPStatus.BAD_GATEWAY

    def __init__(self, message: str, data: Optional[Any] = None, retryable: bool = False):
        super().__init__(message, data)
        self.retryable = retryable


# format the validation errors into our desired output
def format_validation_errors(errors: List[dict]) -> Dict:
    formatted_errors = {}

    for error in errors:
        # Extract the field name and error message
        field = error["loc"][-1] if len(error["loc"]) > 1 else "Unknown"
        message = error["msg"]

        if field in formatted_errors:
            formatted_errors[field].append(message)
        else:
            formatted_errors[field] = [message]

    return {
        "data": {"fields": formatted_errors},
        "message": "Validation error occurred.",
        "status": False,
    }


def handle_validation_error(request: Request, exc: PydanticValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content=format_validation_errors(exc.errors()))


async def ndr_exception_handler(request: Request, exc: NdrError) -> JSONResponse:
    logger.warning(
        msg="{} on {}: {}".format(type(exc).__name__, request.url.path, exc.message)
    )
    return JSONResponse(
        status_code=int(exc.status_code),
        content={
            "message": exc.message,
            "status": False,
            "data": exc.data if exc.data is not None else {},
        },
    )


# Custom internal server error handler
async def custom_http_exception_handler(
    request: Request, exc: HTTPException
) -> JSONResponse:
    if exc.status_code == 500:
        logger.error(f"Internal server error: {exc.detail}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": "An internal server error occurred. Please try again later."
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )
