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
Data models for the coreason-relier package.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

OAUTH_CONTEXT = "oauth"


class VerificationMethod(StrEnum):
    EMAIL = "email"
    EMAIL_2FA = "email-2fa"
    EMAIL_CAPTCHA = "email-captcha"
    TOTP_2FA = "totp-2fa"


class VerificationReason(StrEnum):
    SIGN_IN = "login"
    SIGN_UP = "signup"


class OAuthPrompt(StrEnum):
    CONSENT = "consent"
    NONE = "none"


class AccessType(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class CodeChallengeMethod(StrEnum):
    S256 = "S256"


# Profile permission -> Account attribute holding its value
PERMISSIONS_TO_KEYS: dict[str, str] = {
    "openid": "uid",
    "profile:avatar": "profile_image_url",
    "profile:display_name": "display_name",
    "profile:email": "email",
    "profile:uid": "uid",
}


class ClientMetadata(BaseModel):
    """
    Registered metadata of an OAuth client, as resolved from the client registry.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    client_id: str
    image_uri: str | None = None
    service_name: str
    redirect_uri: str
    trusted: bool


class RelierConfig(BaseModel):
    """
    Fully resolved OAuth relier configuration.

    Built once by the resolution flow and frozen afterwards. When `scope` is set,
    it is exactly the space-joined `permissions`.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    context: str = OAUTH_CONTEXT
    client_id: str
    service: str | None = None
    service_name: str | None = None
    image_uri: str | None = None
    redirect_uri: str | None = None
    redirect_to: str | None = None
    trusted: bool = False
    access_type: AccessType | None = None
    prompt: OAuthPrompt | None = None
    scope: str | None = None
    permissions: tuple[str, ...] = ()
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: CodeChallengeMethod | None = None
    keys_jwk: str | None = None
    action: str | None = None
    service_fallback: bool = Field(
        default=False,
        description="True when client_id was taken from an unauthenticated `service` link parameter.",
    )

    @model_validator(mode="after")
    def check_scope_matches_permissions(self) -> "RelierConfig":
        if self.scope is not None and self.scope != " ".join(self.permissions):
            raise ValueError("scope must equal the space-joined permissions")
        return self


class Account(BaseModel):
    """
    The account being signed in to.

    Mutable: the authentication service fills in `uid`, `session_token` and the
    verification state after a successful sign-in.
    """

    model_config = ConfigDict(validate_assignment=True)

    email: str | None = None
    uid: str | None = None
    session_token: SecretStr | None = None
    verified: bool = False
    verification_method: VerificationMethod | None = None
    verification_reason: VerificationReason | None = None
    display_name: str | None = None
    profile_image_url: str | None = None
    granted_permissions: dict[str, list[str]] = Field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"Account(email='<REDACTED>', uid={self.uid!r}, "
            f"session_token={self.session_token!r}, verified={self.verified!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()

    def is_default(self) -> bool:
        """An account nobody has identified yet has neither an email nor a uid."""
        return not self.email and not self.uid

    def has_session_token(self) -> bool:
        return self.session_token is not None

    def discard_session_token(self) -> None:
        self.session_token = None

    def get_permissions_with_values(self, permissions: tuple[str, ...] | list[str]) -> list[str]:
        """
        Filter `permissions` down to those the account holds a value for.

        Unknown permissions are dropped.
        """
        result = []
        for permission in permissions:
            key = PERMISSIONS_TO_KEYS.get(permission)
            if key is None:
                continue
            if getattr(self, key) in (None, ""):
                continue
            result.append(permission)
        return result

    def has_seen_permissions(self, client_id: str, permissions: list[str]) -> bool:
        seen = set(self.granted_permissions.get(client_id, []))
        return all(permission in seen for permission in permissions)

    def save_granted_permissions(self, client_id: str, permissions: list[str]) -> None:
        current = list(self.granted_permissions.get(client_id, []))
        for permission in permissions:
            if permission not in current:
                current.append(permission)
        self.granted_permissions = {**self.granted_permissions, client_id: current}


class OutcomeKind(StrEnum):
    NEEDS_PERMISSION_CONSENT = "needs_permission_consent"
    NEEDS_SIGNIN_CONFIRMATION = "needs_signin_confirmation"
    NEEDS_EMAIL_CODE = "needs_email_code"
    NEEDS_TOTP_CODE = "needs_totp_code"
    NEEDS_EMAIL_CONFIRMATION = "needs_email_confirmation"
    BLOCKED = "blocked"
    BOUNCED = "bounced"
    SUCCESS = "success"


class SignInOutcome(BaseModel):
    """
    Result of one sign-in attempt.

    Attributes:
        kind (OutcomeKind): Which next step the user is sent to.
        screen (str | None): The named screen navigated to, None on success.
        data (dict[str, Any]): Data handed to the navigation collaborator.
        reason (str | None): Why sign-in was blocked (BLOCKED only).
        result (Any): What the broker's after-sign-in hook returned (SUCCESS only).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: OutcomeKind
    screen: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None
    result: Any = None
