from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .properties import Properties


class ErrorKind(Enum):
    """Closed set of failure kinds reported by ``update``."""
    FETCH_PROFILE_ERROR = "FetchProfileError"
    ACCESS_TOKEN_ERROR = "AccessTokenError"
    INTERNAL_ERROR = "InternalError"
    RETURNED_PROFILE_ERROR = "ReturnedProfileError"
    ACCESS_EXPIRED = "AccessExpired"
    AWS_ERROR = "AWS error"
    TAG_MISMATCH = "TagMismatch"
    OTHER = "Other"


_LABELS = {
    ErrorKind.FETCH_PROFILE_ERROR: "Fetch profile error",
    ErrorKind.ACCESS_TOKEN_ERROR: "Access token error",
    ErrorKind.INTERNAL_ERROR: "Internal error",
    ErrorKind.RETURNED_PROFILE_ERROR: "Returned profile error",
    ErrorKind.ACCESS_EXPIRED: "Access expired",
    ErrorKind.AWS_ERROR: "AWS error",
    ErrorKind.TAG_MISMATCH: "Tag mismatch",
    ErrorKind.OTHER: "Error",
}

# The SDK reports an expired web-identity session as a generic credentials failure.
CREDENTIALS_ERROR_CODE = "CredentialsError"


@dataclass(slots=True)
class DynamoBackendError(Exception):
    """An error surfaced by the protocol engine.

    ``operation``, ``code`` and ``retryable`` are only meaningful for AWS errors
    (and for ``ACCESS_EXPIRED``, which is an AWS credentials error promoted).
    ``expected``/``actual`` are only set for ``TAG_MISMATCH``.
    """

    kind: ErrorKind
    message: str
    operation: str | None = None
    code: str | None = None
    retryable: bool = False
    expected: str | None = None
    actual: str | None = None

    def __str__(self) -> str:
        return format_error(self)


def error_kind_for_type(type_tag: str | None) -> ErrorKind:
    if not type_tag:
        return ErrorKind.OTHER
    for kind in ErrorKind:
        if kind.value == type_tag:
            return kind
    return ErrorKind.OTHER


def classify_error(properties: Properties) -> DynamoBackendError:
    """
    Build an error from an inbound bag carrying an ``"error"`` field.

    The ``"type"`` field selects the kind; an AWS error whose ``"code"`` is
    ``CredentialsError`` is promoted to ``ACCESS_EXPIRED``.
    """
    message = properties.get("error") or ""
    kind = error_kind_for_type(properties.get("type"))
    code = properties.get("code")

    if kind is ErrorKind.AWS_ERROR and code == CREDENTIALS_ERROR_CODE:
        kind = ErrorKind.ACCESS_EXPIRED

    if kind in (ErrorKind.AWS_ERROR, ErrorKind.ACCESS_EXPIRED):
        return DynamoBackendError(
            kind=kind,
            message=message,
            operation=properties.get("operation"),
            code=code,
            retryable=(properties.get("retryable") == "true"),
        )

    return DynamoBackendError(kind=kind, message=message)


def internal_error(message: str) -> DynamoBackendError:
    return DynamoBackendError(kind=ErrorKind.INTERNAL_ERROR, message=message)


def tag_mismatch(expected: int | str, actual: str | None) -> DynamoBackendError:
    return DynamoBackendError(
        kind=ErrorKind.TAG_MISMATCH,
        message=f"expected tag {expected}, got {actual if actual is not None else 'none'}",
        expected=str(expected),
        actual=actual,
    )


def format_error(err: DynamoBackendError) -> str:
    if err.kind is ErrorKind.AWS_ERROR:
        return (
            f"AWS error, operation: {err.operation or ''}, code: {err.code or ''}, "
            f"retryable: {'true' if err.retryable else 'false'}, message: {err.message}"
        )
    return f"{_LABELS[err.kind]}: {err.message}"
