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
Configuration for the coreason-relier package.
"""

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScopedKeyRule(BaseModel):
    """Redirect URIs allowed to receive encryption keys for one key-bearing scope."""

    model_config = ConfigDict(frozen=True)

    redirect_uris: tuple[str, ...] = ()


class CoreasonRelierConfig(BaseSettings):
    """
    Configuration settings for coreason-relier.

    Attributes:
        oauth_url (str): Base URL of the OAuth server hosting the client registry.
        auth_url (str): Base URL of the authentication server.
        http_timeout (float): Timeout in seconds for all network operations.
        pii_salt (SecretStr): Salt for anonymizing uids and emails in logs.
        trusted_profile_scope (str): Scope expanded into sub-scopes for trusted reliers asking for consent.
        trusted_profile_scope_expansion (tuple[str, ...]): The sub-scopes `trusted_profile_scope` expands to.
        untrusted_allowed_permissions (tuple[str, ...]): The only permissions an untrusted relier may request.
        scoped_keys_enabled (bool): Whether reliers may ask for account encryption keys.
        scoped_keys_validation (dict[str, ScopedKeyRule]): Key-bearing scopes and their allowed redirect URIs.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_RELIER_",
        case_sensitive=False,
    )

    unsafe_local_dev: bool = False
    oauth_url: str = "https://oauth.accounts.coreason.ai"
    auth_url: str = "https://api.accounts.coreason.ai"
    http_timeout: float = Field(..., description="Timeout in seconds for all network operations.")
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    trusted_profile_scope: str = "profile"
    trusted_profile_scope_expansion: tuple[str, ...] = (
        "profile:uid",
        "profile:email",
        "profile:display_name",
        "profile:avatar",
    )
    untrusted_allowed_permissions: tuple[str, ...] = (
        "openid",
        "profile:display_name",
        "profile:email",
        "profile:uid",
    )

    scoped_keys_enabled: bool = False
    scoped_keys_validation: dict[str, ScopedKeyRule] = Field(default_factory=dict)

    @field_validator("oauth_url", "auth_url", mode="after")
    @classmethod
    def validate_https(cls, v: str, info: ValidationInfo) -> str:
        """
        Ensures server URLs use HTTPS, unless strictly opted out for local dev.
        """
        v = v.strip().rstrip("/")
        if v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Server URL must be absolute: {v}")
        return v

    @field_validator("trusted_profile_scope_expansion", "untrusted_allowed_permissions")
    @classmethod
    def reject_empty_scopes(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if any(not scope.strip() or scope != scope.strip() for scope in v):
            raise ValueError("Scopes must be non-empty and contain no whitespace padding")
        return v
