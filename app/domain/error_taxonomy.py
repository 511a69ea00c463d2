from __future__ import annotations

from typing import Literal

from app.domain.errors import (
    ClaimNotFoundError,
    ConsistencyError,
    DomainValidationError,
    GatewayRejectedError,
    GatewayUnavailableError,
    InvalidStateError,
    KeyNotFoundError,
    MissingDataError,
)

# Canonical error vocabulary for all key event handlers.
ErrorCode = Literal[
    "validation_error",
    "missing_data",
    "invalid_state",
    "key_not_found",
    "claim_not_found",
    "consistency_violation",
    "directory_unavailable",
    "directory_rejected",
    "internal_error",
]

RetryClassification = Literal["recoverable", "terminal"]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "validation_error",
    "missing_data",
    "invalid_state",
    "key_not_found",
    "claim_not_found",
    "consistency_violation",
    "directory_unavailable",
    "directory_rejected",
    "internal_error",
)

# Transient directory failures and unexpected faults go to the retry channel.
# Domain errors are acknowledged and surfaced.
RECOVERABLE_ERROR_CODES: frozenset[ErrorCode] = frozenset({"directory_unavailable", "internal_error"})

# Order matters: subclasses before their bases.
_EXCEPTION_CODES: tuple[tuple[type[Exception], ErrorCode], ...] = (
    (InvalidStateError, "invalid_state"),
    (ConsistencyError, "consistency_violation"),
    (KeyNotFoundError, "key_not_found"),
    (ClaimNotFoundError, "claim_not_found"),
    (MissingDataError, "missing_data"),
    (DomainValidationError, "validation_error"),
    (GatewayUnavailableError, "directory_unavailable"),
    (GatewayRejectedError, "directory_rejected"),
)


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_error(code: ErrorCode) -> RetryClassification:
    if code in RECOVERABLE_ERROR_CODES:
        return "recoverable"
    return "terminal"


def error_code_for(exc: BaseException) -> ErrorCode:
    for exc_type, code in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            return code
    return "internal_error"
