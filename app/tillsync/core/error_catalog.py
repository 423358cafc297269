from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


IDEMPOTENCY_HEADER = "X-Idempotency-Result"


class ErrorCatalog:
    UNAUTHORIZED = ErrorDefinition("UNAUTHORIZED", "Unauthorized", status.HTTP_401_UNAUTHORIZED)
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LEDGER_UNAVAILABLE = ErrorDefinition(
        "LEDGER_UNAVAILABLE",
        "Transaction could not be durably recorded",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    TRANSACTION_ID_REQUIRED = ErrorDefinition(
        "TRANSACTION_ID_REQUIRED",
        "Transaction ID required",
        status.HTTP_400_BAD_REQUEST,
    )
    TRANSACTION_PAYLOAD_MISMATCH = ErrorDefinition(
        "TRANSACTION_PAYLOAD_MISMATCH",
        "Transaction id already synced with a different payload",
        status.HTTP_409_CONFLICT,
    )
    ASSET_NOT_FOUND = ErrorDefinition(
        "ASSET_NOT_FOUND",
        "Asset not found",
        status.HTTP_404_NOT_FOUND,
    )
    IDEMPOTENCY_REPLAY = ErrorDefinition(
        "IDEMPOTENCY_REPLAY",
        "Idempotent replay",
        status.HTTP_200_OK,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)
