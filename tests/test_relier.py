# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relier

import base64
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest
from authlib.jose import JsonWebKey

from coreason_relier.config import CoreasonRelierConfig, ScopedKeyRule
from coreason_relier.exceptions import (
    CoreasonRelierError,
    IncorrectRedirectError,
    InvalidParameterError,
    MissingParameterError,
    TransportError,
    UnknownClientError,
    ValidationKind,
)
from coreason_relier.models import Account, OAuthPrompt
from coreason_relier.relier import OAuthRelier, RelierConfigBuilder, ResolutionState
from coreason_relier.session import MemorySessionStore

CLIENT_ID = "dcdb5ae7add825d2"
REDIRECT_URI = "https://relier.example.com/oauth/complete"
NOTES_SCOPE = "https://identity.example.com/apps/notes"


def _params(**overrides: str) -> dict[str, str]:
    params = {
        "client_id": CLIENT_ID,
        "redirect_uri": REDIRECT_URI,
        "scope": "profile:email openid profile:email",
        "state": "xyz",
    }
    params.update(overrides)
    return params


def _relier(
    params: dict[str, str],
    registry: AsyncMock,
    config: CoreasonRelierConfig,
    session: MemorySessionStore | None = None,
) -> OAuthRelier:
    return OAuthRelier(params, client_registry=registry, session=session or MemorySessionStore(), config=config)


def _jwk() -> str:
    key = JsonWebKey.generate_key("EC", "P-256", is_private=True)
    raw = json.dumps(key.as_dict(is_private=False)).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


@pytest.mark.asyncio
async def test_signin_flow_resolves(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(access_type="offline", redirectTo="https://relier.example.com/after"), registry, config)

    result = await relier.fetch()

    registry.get_client_info.assert_awaited_once_with(CLIENT_ID)
    assert relier.state == ResolutionState.RESOLVED
    assert relier.config is result
    assert result.client_id == CLIENT_ID
    assert result.service == CLIENT_ID
    assert result.service_name == "Relier"
    assert result.redirect_uri == REDIRECT_URI
    assert result.redirect_to == "https://relier.example.com/after"
    assert result.trusted is False
    assert result.access_type == "offline"
    assert result.state == "xyz"
    assert result.permissions == ("profile:email", "openid")
    assert result.scope == "profile:email openid"
    assert result.context == "oauth"
    assert relier.is_oauth()


@pytest.mark.asyncio
async def test_signin_flow_rejects_service_param(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(service="sync"), registry, config)

    with pytest.raises(InvalidParameterError) as exc_info:
        await relier.fetch()

    assert exc_info.value.field == "service"
    assert relier.state == ResolutionState.FAILED
    assert relier.error is exc_info.value
    registry.get_client_info.assert_not_awaited()


@pytest.mark.asyncio
async def test_service_param_wins_over_other_errors(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier({"service": "sync", "client_id": "not-hex"}, registry, config)

    with pytest.raises(InvalidParameterError) as exc_info:
        await relier.fetch()
    assert exc_info.value.field == "service"


@pytest.mark.asyncio
async def test_missing_scope_on_signin_flow(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    params = _params()
    del params["scope"]

    with pytest.raises(MissingParameterError) as exc_info:
        await _relier(params, registry, config).fetch()
    assert exc_info.value.field == "scope"


@pytest.mark.asyncio
async def test_invalid_client_id_param(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    with pytest.raises(InvalidParameterError) as exc_info:
        await _relier(_params(client_id="123"), registry, config).fetch()
    assert exc_info.value.field == "client_id"


@pytest.mark.asyncio
async def test_registry_invalid_client_id_is_unknown_client(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    registry.get_client_info.side_effect = InvalidParameterError("client_id")
    relier = _relier(_params(), registry, config)

    with pytest.raises(UnknownClientError) as exc_info:
        await relier.fetch()

    assert exc_info.value.kind == ValidationKind.UNKNOWN_CLIENT
    assert exc_info.value.client_id == CLIENT_ID
    assert exc_info.value.to_dict()["client_id"] == CLIENT_ID
    assert relier.state == ResolutionState.FAILED


@pytest.mark.asyncio
async def test_registry_invalid_other_param_propagates(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    error = InvalidParameterError("redirect_uri")
    registry.get_client_info.side_effect = error

    with pytest.raises(InvalidParameterError) as exc_info:
        await _relier(_params(), registry, config).fetch()
    assert exc_info.value is error


@pytest.mark.asyncio
async def test_registry_transport_error_propagates(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    error = TransportError("down")
    registry.get_client_info.side_effect = error
    relier = _relier(_params(), registry, config)

    with pytest.raises(TransportError) as exc_info:
        await relier.fetch()
    assert exc_info.value is error
    assert relier.state == ResolutionState.FAILED


@pytest.mark.asyncio
async def test_invalid_client_metadata(
    registry: AsyncMock, config: CoreasonRelierConfig, client_info: dict[str, Any]
) -> None:
    del client_info["trusted"]

    with pytest.raises(MissingParameterError) as exc_info:
        await _relier(_params(), registry, config).fetch()
    assert exc_info.value.field == "trusted"


@pytest.mark.asyncio
async def test_client_metadata_accepts_string_booleans(
    registry: AsyncMock, config: CoreasonRelierConfig, client_info: dict[str, Any]
) -> None:
    client_info["trusted"] = "true"
    result = await _relier(_params(scope="profile"), registry, config).fetch()
    assert result.trusted is True


@pytest.mark.asyncio
async def test_redirect_uri_mismatch_fails(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(redirect_uri="https://evil.example.com/cb"), registry, config)

    with pytest.raises(IncorrectRedirectError):
        await relier.fetch()
    assert relier.state == ResolutionState.FAILED


@pytest.mark.asyncio
async def test_missing_redirect_uri_fails_cross_check(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    params = _params()
    del params["redirect_uri"]

    with pytest.raises(IncorrectRedirectError):
        await _relier(params, registry, config).fetch()


@pytest.mark.asyncio
async def test_verification_flow_uses_session_context(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    session = MemorySessionStore(
        {
            "client_id": CLIENT_ID,
            "redirect_uri": "https://evil.example.com/cb",
            "scope": "openid profile:email",
            "state": "state-1",
            "action": "signin",
            "ignored": "value",
        }
    )
    relier = _relier({"code": "c0de", "uid": "u1"}, registry, config, session)

    result = await relier.fetch()

    # no redirect cross-check in the verification flow; registry value wins
    assert result.redirect_uri == REDIRECT_URI
    assert result.state == "state-1"
    assert result.action == "signin"
    assert result.service == CLIENT_ID
    assert result.permissions == ("openid", "profile:email")
    assert result.service_fallback is False


@pytest.mark.asyncio
async def test_verification_flow_in_second_browser(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier({"code": "c0de", "service": CLIENT_ID}, registry, config)

    result = await relier.fetch()

    assert result.client_id == CLIENT_ID
    assert result.service == CLIENT_ID
    assert result.service_fallback is True
    assert result.scope is None
    assert result.permissions == ()
    assert relier.account_needs_permissions(Account(email="a@example.com", uid="u1")) is False


@pytest.mark.asyncio
async def test_verification_flow_without_service_or_session(
    registry: AsyncMock, config: CoreasonRelierConfig
) -> None:
    with pytest.raises(MissingParameterError) as exc_info:
        await _relier({"code": "c0de"}, registry, config).fetch()
    assert exc_info.value.field == "client_id"


@pytest.mark.asyncio
async def test_empty_code_is_not_a_verification_flow(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(code=""), registry, config)
    await relier.fetch()
    assert relier.state == ResolutionState.RESOLVED


@pytest.mark.asyncio
async def test_untrusted_relier_scope_is_sanitized(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    result = await _relier(_params(scope="profile:email secret openid"), registry, config).fetch()
    assert result.permissions == ("profile:email", "openid")


@pytest.mark.asyncio
async def test_untrusted_relier_without_allowed_scope_fails(
    registry: AsyncMock, config: CoreasonRelierConfig
) -> None:
    relier = _relier(_params(scope="secret"), registry, config)
    with pytest.raises(InvalidParameterError) as exc_info:
        await relier.fetch()
    assert exc_info.value.field == "scope"
    assert relier.state == ResolutionState.FAILED


@pytest.mark.asyncio
async def test_trusted_relier_with_consent_expands_profile(
    registry: AsyncMock, config: CoreasonRelierConfig, client_info: dict[str, Any]
) -> None:
    client_info["trusted"] = True
    relier = _relier(_params(scope="openid profile profile:email", prompt="consent"), registry, config)

    result = await relier.fetch()

    assert result.prompt == OAuthPrompt.CONSENT
    assert result.permissions == (
        "openid",
        "profile:email",
        "profile:uid",
        "profile:display_name",
        "profile:avatar",
    )
    assert relier.is_trusted() is True
    assert relier.wants_consent() is True


@pytest.mark.asyncio
async def test_resolution_runs_once(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(), registry, config)
    await relier.fetch()
    with pytest.raises(CoreasonRelierError, match="already ran"):
        await relier.fetch()


def test_config_unavailable_before_resolution(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(), registry, config)
    with pytest.raises(CoreasonRelierError, match="not resolved"):
        _ = relier.config


def test_builder_rejects_inconsistent_scope() -> None:
    builder = RelierConfigBuilder().set({"client_id": CLIENT_ID, "scope": "a b", "permissions": ("a",)})
    with pytest.raises(CoreasonRelierError, match="inconsistent"):
        builder.build()


@pytest.mark.asyncio
async def test_account_needs_permissions(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = _relier(_params(scope="openid profile:email profile:display_name"), registry, config)
    await relier.fetch()
    # no display name: that permission is not asked for
    account = Account(email="a@example.com", uid="u1")

    assert relier.account_needs_permissions(account) is True

    account.save_granted_permissions(CLIENT_ID, ["openid", "profile:email"])
    assert relier.account_needs_permissions(account) is False

    account.display_name = "Alice"
    assert relier.account_needs_permissions(account) is True


@pytest.mark.asyncio
async def test_trusted_relier_without_consent_needs_no_permissions(
    registry: AsyncMock, config: CoreasonRelierConfig, client_info: dict[str, Any]
) -> None:
    client_info["trusted"] = True
    relier = _relier(_params(scope="profile"), registry, config)
    await relier.fetch()
    assert relier.account_needs_permissions(Account(email="a@example.com", uid="u1")) is False


@pytest.fixture
def keys_config() -> CoreasonRelierConfig:
    return CoreasonRelierConfig(
        http_timeout=5.0,
        scoped_keys_enabled=True,
        scoped_keys_validation={NOTES_SCOPE: ScopedKeyRule(redirect_uris=(REDIRECT_URI,))},
    )


@pytest.mark.asyncio
async def test_wants_keys(registry: AsyncMock, keys_config: CoreasonRelierConfig, client_info: dict[str, Any]) -> None:
    client_info["trusted"] = True
    relier = _relier(_params(scope=f"profile {NOTES_SCOPE}", keys_jwk=_jwk()), registry, keys_config)
    await relier.fetch()
    assert relier.wants_keys() is True


@pytest.mark.asyncio
async def test_wants_keys_without_key_bearing_scope(
    registry: AsyncMock, keys_config: CoreasonRelierConfig, client_info: dict[str, Any]
) -> None:
    client_info["trusted"] = True
    relier = _relier(_params(scope="profile", keys_jwk=_jwk()), registry, keys_config)
    await relier.fetch()
    with pytest.raises(InvalidParameterError) as exc_info:
        relier.wants_keys()
    assert exc_info.value.field == "scope"


@pytest.mark.asyncio
async def test_wants_keys_with_unregistered_redirect(
    registry: AsyncMock, client_info: dict[str, Any]
) -> None:
    client_info["trusted"] = True
    config = CoreasonRelierConfig(
        http_timeout=5.0,
        scoped_keys_enabled=True,
        scoped_keys_validation={NOTES_SCOPE: ScopedKeyRule(redirect_uris=("https://other.example.com",))},
    )
    relier = _relier(_params(scope=NOTES_SCOPE, keys_jwk=_jwk()), registry, config)
    await relier.fetch()
    with pytest.raises(InvalidParameterError) as exc_info:
        relier.wants_keys()
    assert exc_info.value.field == "redirect_uri"


@pytest.mark.asyncio
async def test_wants_keys_disabled_or_without_jwk(
    registry: AsyncMock, config: CoreasonRelierConfig, keys_config: CoreasonRelierConfig
) -> None:
    relier = _relier(_params(keys_jwk=_jwk()), registry, config)
    await relier.fetch()
    assert relier.wants_keys() is False

    relier = _relier(_params(), registry, keys_config)
    await relier.fetch()
    assert relier.wants_keys() is False


def test_set_uid(registry: AsyncMock, config: CoreasonRelierConfig) -> None:
    relier = OAuthRelier(
        _params(), client_registry=registry, session=MemorySessionStore(), config=config, uid="old"
    )
    relier.set_uid("new")
    assert relier.uid == "new"
