from utils.exception_handler import (
    NdrError,
    ValidationError,
    NotFoundError,
    PolicyViolation,
    ConflictError,
    ExternalServiceError,
)

__all__ = [
    "NdrError",
    "ValidationError",
    "NotFoundError",
    "PolicyViolation",
    "ConflictError",
    "ExternalServiceError",
]
