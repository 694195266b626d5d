# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relier

"""
Custom exceptions for the coreason-relier package.
"""

from enum import StrEnum
from typing import Any


class CoreasonRelierError(Exception):
    """Base exception for all coreason-relier errors."""

    kind: str = "UNEXPECTED_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Serializable form handed to the view layer."""
        return {"kind": str(self.kind), "message": str(self)}


class ValidationKind(StrEnum):
    INVALID_PARAMETER = "INVALID_PARAMETER"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    UNKNOWN_CLIENT = "UNKNOWN_CLIENT"
    INCORRECT_REDIRECT = "INCORRECT_REDIRECT"


class RelierValidationError(CoreasonRelierError):
    """
    Raised when OAuth request parameters or client metadata fail validation.

    Attributes:
        kind (ValidationKind): The validation error category.
        field (str | None): The offending parameter, if any.
    """

    kind: ValidationKind = ValidationKind.INVALID_PARAMETER

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field is not None:
            data["field"] = self.field
        return data


class InvalidParameterError(RelierValidationError):
    """Raised when a parameter is present but has an invalid value."""

    kind = ValidationKind.INVALID_PARAMETER

    def __init__(self, field: str) -> None:
        super().__init__(f"Invalid OAuth parameter: {field}", field=field)


class MissingParameterError(RelierValidationError):
    """Raised when a required parameter is absent and has no default."""

    kind = ValidationKind.MISSING_PARAMETER

    def __init__(self, field: str) -> None:
        super().__init__(f"Missing OAuth parameter: {field}", field=field)


class UnknownClientError(RelierValidationError):
    """Raised when the client registry does not know the requested client_id."""

    kind = ValidationKind.UNKNOWN_CLIENT

    def __init__(self, client_id: str | None) -> None:
        super().__init__("Unknown client", field="client_id")
        self.client_id = client_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["client_id"] = self.client_id
        return data


class IncorrectRedirectError(RelierValidationError):
    """Raised when the requested redirect_uri does not match the registered one."""

    kind = ValidationKind.INCORRECT_REDIRECT

    def __init__(self) -> None:
        super().__init__("Incorrect redirect_uri", field="redirect_uri")


class AuthErrorKind(StrEnum):
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
    THROTTLED = "THROTTLED"
    REQUEST_BLOCKED = "REQUEST_BLOCKED"
    EMAIL_HARD_BOUNCE = "EMAIL_HARD_BOUNCE"
    EMAIL_SENT_COMPLAINT = "EMAIL_SENT_COMPLAINT"
    UNKNOWN = "UNKNOWN"


# auth-server errno -> kind
AUTH_ERRNO_KINDS: dict[int, AuthErrorKind] = {
    114: AuthErrorKind.THROTTLED,
    125: AuthErrorKind.REQUEST_BLOCKED,
    132: AuthErrorKind.EMAIL_SENT_COMPLAINT,
    133: AuthErrorKind.EMAIL_HARD_BOUNCE,
    999: AuthErrorKind.UNEXPECTED_ERROR,
}


class AuthError(CoreasonRelierError):
    """
    Raised when the authentication service rejects a sign-in attempt.

    Attributes:
        kind (AuthErrorKind): The error category.
        errno (int | None): The server errno, when the error came from the server.
        verification_method (str | None): Set on blocked sign-ins that can be unblocked.
        verification_reason (str | None): Set on blocked sign-ins that can be unblocked.
    """

    def __init__(
        self,
        kind: AuthErrorKind,
        message: str | None = None,
        errno: int | None = None,
        verification_method: str | None = None,
        verification_reason: str | None = None,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.errno = errno
        self.verification_method = verification_method
        self.verification_reason = verification_reason

    @classmethod
    def from_errno(cls, errno: int | None, message: str | None = None, **kwargs: Any) -> "AuthError":
        kind = AUTH_ERRNO_KINDS.get(errno, AuthErrorKind.UNKNOWN) if errno is not None else AuthErrorKind.UNKNOWN
        return cls(kind, message=message, errno=errno, **kwargs)

    def is_kind(self, *kinds: AuthErrorKind) -> bool:
        return self.kind in kinds

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.errno is not None:
            data["errno"] = self.errno
        return data


class TransportError(CoreasonRelierError):
    """Raised when an HTTP collaborator cannot reach its server or gets garbage back."""


class OversizedResponseError(TransportError):
    """Raised when an HTTP response is too large."""
