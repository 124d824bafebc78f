"""Pairing error taxonomy.

Every error carries the HTTP status it maps to and a stable ``error_code`` so
the admin UI can tell "terminal, issue a new code" (expired / conflict) apart
from "transient, retry the action".
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class PairingError(Exception):
    status_code = 500
    error_code = "PAIRING_ERROR"
    retryable = False

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail()
        super().__init__(self.detail)

    @classmethod
    def default_detail(cls) -> str:
        return "Pairing request failed"


class ValidationError(PairingError):
    status_code = 400
    error_code = "VALIDATION_ERROR"

    @classmethod
    def default_detail(cls) -> str:
        return "Invalid input"


class InvalidArgument(ValidationError):
    error_code = "INVALID_ARGUMENT"


class NotFoundError(PairingError):
    status_code = 404
    error_code = "NOT_FOUND"

    @classmethod
    def default_detail(cls) -> str:
        return "Not found"


class AssetNotFound(NotFoundError):
    error_code = "ASSET_NOT_FOUND"

    @classmethod
    def default_detail(cls) -> str:
        return "Asset not found"


class ConflictError(PairingError):
    status_code = 409
    error_code = "CODE_NO_LONGER_VALID"

    @classmethod
    def default_detail(cls) -> str:
        return "Activation code is no longer valid"


class ExpiredError(PairingError):
    status_code = 410
    error_code = "CODE_EXPIRED"

    @classmethod
    def default_detail(cls) -> str:
        return "Activation code has expired"


class TransientStoreError(PairingError):
    status_code = 503
    error_code = "STORE_UNAVAILABLE"
    retryable = True

    @classmethod
    def default_detail(cls) -> str:
        return "Temporary failure, please retry"


class GenerationExhausted(PairingError):
    """Could not find a free activation code within the attempt budget.

    Operators must be alerted: it means the code space or the entropy source
    is broken, not that the caller did something wrong.
    """

    status_code = 503
    error_code = "GENERATION_EXHAUSTED"

    @classmethod
    def default_detail(cls) -> str:
        return "Unable to generate an activation code"


def pairing_error_handler(request: Request, exc: PairingError) -> JSONResponse:
    """Render a PairingError as ``{detail, error_code, retryable}``."""
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            "retryable": exc.retryable,
        },
        headers=headers,
    )
