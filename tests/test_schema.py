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

import pytest
from authlib.jose import JsonWebKey

from coreason_relier.exceptions import InvalidParameterError, MissingParameterError, ValidationKind
from coreason_relier.schema import (
    Bool,
    Enum,
    Hex,
    Jwk,
    String,
    Url,
    client_id,
    code_challenge,
    field,
    prompt,
    transform_using_schema,
)


def _encode_jwk(jwk: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(jwk).encode("utf-8")).decode("ascii").rstrip("=")


SCHEMA = {
    "client_id": field(client_id(), required=True, rename_to="clientId"),
    "scope": field(String(min_length=1), required=True),
    "redirect_uri": field(Url(), rename_to="redirectUri"),
    "prompt": field(prompt()),
}


def test_transform_renames_and_drops_unknown_fields() -> None:
    result = transform_using_schema(
        {
            "client_id": "dcdb5ae7add825d2",
            "scope": "profile",
            "redirect_uri": "https://example.com/cb",
            "unknown": "dropped",
        },
        SCHEMA,
    )
    assert result == {"clientId": "dcdb5ae7add825d2", "scope": "profile", "redirectUri": "https://example.com/cb"}


def test_transform_missing_required_field() -> None:
    with pytest.raises(MissingParameterError) as exc_info:
        transform_using_schema({"scope": "profile"}, SCHEMA)
    assert exc_info.value.field == "client_id"
    assert exc_info.value.kind == ValidationKind.MISSING_PARAMETER


def test_transform_none_counts_as_absent() -> None:
    with pytest.raises(MissingParameterError):
        transform_using_schema({"client_id": None, "scope": "profile"}, SCHEMA)


def test_transform_reports_first_offending_field_in_schema_order() -> None:
    with pytest.raises(InvalidParameterError) as exc_info:
        transform_using_schema({"client_id": "zz", "scope": "", "prompt": "bogus"}, SCHEMA)
    assert exc_info.value.field == "client_id"
    assert exc_info.value.kind == ValidationKind.INVALID_PARAMETER


def test_transform_applies_default() -> None:
    schema = {"trusted": field(Bool(), default=False), "name": field(String())}
    assert transform_using_schema({}, schema) == {"trusted": False}


def test_transform_is_all_or_nothing() -> None:
    data = {"client_id": "dcdb5ae7add825d2", "scope": "profile", "prompt": "bogus"}
    with pytest.raises(InvalidParameterError) as exc_info:
        transform_using_schema(data, SCHEMA)
    assert exc_info.value.field == "prompt"
    # input untouched
    assert data["prompt"] == "bogus"


@pytest.mark.parametrize("value", ["00ff", "dcdb5ae7add825d2", "ABCDEF"])
def test_hex_accepts(value: str) -> None:
    assert Hex().coerce(value) == value


@pytest.mark.parametrize("value", ["", "abc", "xyz0", 1234, None])
def test_hex_rejects(value: Any) -> None:
    with pytest.raises(ValueError):
        Hex().coerce(value)


def test_client_id_requires_sixteen_characters() -> None:
    with pytest.raises(ValueError):
        client_id().coerce("dcdb5ae7")
    assert client_id().coerce("dcdb5ae7add825d2") == "dcdb5ae7add825d2"


def test_url_returns_value_verbatim() -> None:
    # no trailing-slash normalization
    assert Url().coerce("https://example.com") == "https://example.com"
    assert Url().coerce("http://127.0.0.1:8080/cb?x=1") == "http://127.0.0.1:8080/cb?x=1"


@pytest.mark.parametrize("value", ["", "not a url", "example.com/path", 42])
def test_url_rejects(value: Any) -> None:
    with pytest.raises(ValueError):
        Url().coerce(value)


def test_url_allow_empty() -> None:
    assert Url(allow_empty=True).coerce("") == ""


def test_string_min_and_max_length() -> None:
    rule = String(min_length=2, max_length=3)
    assert rule.coerce("ab") == "ab"
    with pytest.raises(ValueError):
        rule.coerce("a")
    with pytest.raises(ValueError):
        rule.coerce("abcd")
    with pytest.raises(ValueError):
        rule.coerce(12)


@pytest.mark.parametrize(("value", "expected"), [(True, True), (False, False), ("true", True), ("false", False)])
def test_bool_coerces(value: Any, expected: bool) -> None:
    assert Bool().coerce(value) is expected


@pytest.mark.parametrize("value", ["yes", 1, "True", None])
def test_bool_rejects(value: Any) -> None:
    with pytest.raises(ValueError):
        Bool().coerce(value)


def test_enum() -> None:
    rule = Enum(values=("online", "offline"))
    assert rule.coerce("offline") == "offline"
    with pytest.raises(ValueError):
        rule.coerce("sometimes")


def test_code_challenge_format() -> None:
    challenge = "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"
    assert code_challenge().coerce(challenge) == challenge
    with pytest.raises(ValueError):
        code_challenge().coerce(challenge[:-1])
    with pytest.raises(ValueError):
        code_challenge().coerce(challenge[:-1] + "=")


def test_jwk_accepts_public_ec_key() -> None:
    key = JsonWebKey.generate_key("EC", "P-256", is_private=True)
    encoded = _encode_jwk(key.as_dict(is_private=False))
    assert Jwk().coerce(encoded) == encoded


@pytest.mark.parametrize(
    "value",
    [
        "not+base64url",
        _encode_jwk({"kty": "bogus"}),
        _encode_jwk({"crv": "P-256"}),
        base64.urlsafe_b64encode(b"[1, 2]").decode("ascii"),
        base64.urlsafe_b64encode(b"{not json").decode("ascii"),
    ],
)
def test_jwk_rejects(value: str) -> None:
    with pytest.raises(ValueError):
        Jwk().coerce(value)


def test_schema_field_is_frozen() -> None:
    entry = field(Hex(), required=True)
    with pytest.raises(Exception):
        entry.required = False  # type: ignore[misc]
