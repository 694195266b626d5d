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
Declarative field-level validation of flat key-value input.

A schema maps source field names to `SchemaField` entries. Each entry wraps one
rule variant (`Hex`, `Url`, `String`, `Bool`, `Enum`, `Jwk`) that checks and
coerces a raw value. `transform_using_schema` is the single interpreter.
"""

import base64
import binascii
import json
import re
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from authlib.jose import JsonWebKey
from authlib.jose.errors import JoseError
from pydantic import AnyUrl, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from coreason_relier.exceptions import InvalidParameterError, MissingParameterError
from coreason_relier.models import AccessType, CodeChallengeMethod, OAuthPrompt

_HEX_RE = re.compile(r"^(?:[a-fA-F0-9]{2})+$")
_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_url_adapter: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True)

    def coerce(self, value: Any) -> Any:  # pragma: no cover
        raise NotImplementedError


class Hex(_Rule):
    kind: Literal["hex"] = "hex"
    length: int | None = None

    def coerce(self, value: Any) -> str:
        if not isinstance(value, str) or not _HEX_RE.match(value):
            raise ValueError("not a hex string")
        if self.length is not None and len(value) != self.length:
            raise ValueError(f"hex string must be {self.length} characters")
        return value


class Url(_Rule):
    kind: Literal["url"] = "url"
    allow_empty: bool = False

    def coerce(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("not a string")
        if value == "" and self.allow_empty:
            return value
        try:
            url = _url_adapter.validate_python(value)
        except PydanticValidationError as e:
            raise ValueError(f"not a URL: {e}") from e
        if not url.host:
            raise ValueError("URL has no host")
        # AnyUrl normalizes (e.g. adds a trailing slash); redirect URIs compare verbatim.
        return value


class String(_Rule):
    kind: Literal["string"] = "string"
    min_length: int = 0
    max_length: int | None = None
    pattern: str | None = None

    def coerce(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("not a string")
        if len(value) < self.min_length:
            raise ValueError(f"shorter than {self.min_length}")
        if self.max_length is not None and len(value) > self.max_length:
            raise ValueError(f"longer than {self.max_length}")
        if self.pattern is not None and not re.fullmatch(self.pattern, value):
            raise ValueError("does not match pattern")
        return value


class Bool(_Rule):
    kind: Literal["bool"] = "bool"

    def coerce(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value in ("true", "false"):
            return value == "true"
        raise ValueError("not a boolean")


class Enum(_Rule):
    kind: Literal["enum"] = "enum"
    values: tuple[str, ...]

    def coerce(self, value: Any) -> str:
        if value not in self.values:
            raise ValueError(f"not one of {self.values}")
        return str(value)


class Jwk(_Rule):
    """A base64url-encoded JSON Web Key, as sent in `keys_jwk`."""

    kind: Literal["jwk"] = "jwk"

    def coerce(self, value: Any) -> str:
        if not isinstance(value, str) or not _BASE64URL_RE.match(value):
            raise ValueError("not base64url")
        try:
            raw = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
            jwk = json.loads(raw)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"not an encoded JWK: {e}") from e
        if not isinstance(jwk, dict) or not isinstance(jwk.get("kty"), str):
            raise ValueError("JWK must be an object with a `kty`")
        try:
            JsonWebKey.import_key(jwk)
        except (JoseError, ValueError, TypeError, KeyError) as e:
            raise ValueError(f"invalid JWK: {e}") from e
        return value


Rule = Annotated[Hex | Url | String | Bool | Enum | Jwk, Field(discriminator="kind")]


class SchemaField(BaseModel):
    """
    One entry of a schema.

    Attributes:
        rule (Rule): The validator applied to a present value.
        required (bool): Whether an absent value is an error.
        default (Any): Value used when the field is absent.
        rename_to (str | None): Output key, defaults to the source key.
    """

    model_config = ConfigDict(frozen=True)

    rule: Rule
    required: bool = False
    default: Any = None
    rename_to: str | None = None


Schema = Mapping[str, SchemaField]


def field(rule: Any, *, required: bool = False, default: Any = None, rename_to: str | None = None) -> SchemaField:
    return SchemaField(rule=rule, required=required, default=default, rename_to=rename_to)


def client_id() -> Hex:
    return Hex(length=16)


def code_challenge() -> String:
    return String(pattern=r"[A-Za-z0-9_-]{43}")


def code_challenge_method() -> Enum:
    return Enum(values=tuple(m.value for m in CodeChallengeMethod))


def access_type() -> Enum:
    return Enum(values=tuple(a.value for a in AccessType))


def prompt() -> Enum:
    return Enum(values=tuple(p.value for p in OAuthPrompt))


def keys_jwk() -> Jwk:
    return Jwk()


def transform_using_schema(data: Mapping[str, Any], schema: Schema) -> dict[str, Any]:
    """
    Validate and normalize `data` against `schema`.

    Fields are checked in schema order. Keys not named by the schema are dropped.
    A value of None counts as absent.

    Args:
        data: The raw key-value input (query parameters, server response, ...).
        schema: Source field name -> SchemaField.

    Returns:
        dict[str, Any]: The validated values, keyed by their output names.

    Raises:
        MissingParameterError: If a required field is absent and has no default.
        InvalidParameterError: If a present value fails its rule.
    """
    result: dict[str, Any] = {}
    for name, entry in schema.items():
        out_name = entry.rename_to or name
        value = data.get(name)
        if value is None:
            if entry.default is not None:
                result[out_name] = entry.default
            elif entry.required:
                raise MissingParameterError(name)
            continue
        try:
            result[out_name] = entry.rule.coerce(value)
        except ValueError as e:
            raise InvalidParameterError(name) from e
    return result
