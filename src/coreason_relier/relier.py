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
OAuth relier resolution: turns request parameters into a validated, frozen RelierConfig.
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_relier.client_registry import ClientRegistry
from coreason_relier.config import CoreasonRelierConfig
from coreason_relier.exceptions import (
    CoreasonRelierError,
    IncorrectRedirectError,
    InvalidParameterError,
    UnknownClientError,
)
from coreason_relier.models import Account, ClientMetadata, OAuthPrompt, RelierConfig
from coreason_relier.schema import (
    Bool,
    Hex,
    String,
    Url,
    access_type,
    client_id,
    code_challenge,
    code_challenge_method,
    field,
    keys_jwk,
    prompt,
    transform_using_schema,
)
from coreason_relier.scopes import normalize_scopes, scope_str_to_list
from coreason_relier.session import SessionStore
from coreason_relier.utils.logger import logger

tracer = trace.get_tracer(__name__)

CLIENT_INFO_SCHEMA = {
    "id": field(Hex(), required=True, rename_to="client_id"),
    "image_uri": field(Url(allow_empty=True)),
    "name": field(String(min_length=1), required=True, rename_to="service_name"),
    "redirect_uri": field(Url(), required=True),
    "trusted": field(Bool(), required=True),
}

SIGNIN_SIGNUP_QUERY_PARAM_SCHEMA = {
    "access_type": field(access_type()),
    "client_id": field(client_id(), required=True),
    "code_challenge": field(code_challenge()),
    "code_challenge_method": field(code_challenge_method()),
    "keys_jwk": field(keys_jwk()),
    "prompt": field(prompt()),
    "redirectTo": field(Url(), rename_to="redirect_to"),
    "redirect_uri": field(Url()),
    "scope": field(String(min_length=1), required=True),
    "state": field(String()),
}

VERIFICATION_INFO_SCHEMA = {
    "access_type": field(access_type()),
    "action": field(String(min_length=1)),
    "client_id": field(client_id(), required=True),
    "prompt": field(prompt()),
    "redirect_uri": field(Url()),
    # optional: the user may be verifying in a second browser
    "scope": field(String(min_length=1)),
    # `service` for OAuth verification is a client_id
    "service": field(client_id()),
    "state": field(String(min_length=1)),
}


class ResolutionState(StrEnum):
    INIT = "init"
    DETECTING_FLOW_KIND = "detecting_flow_kind"
    RESOLVING_FROM_VERIFICATION_LINK = "resolving_from_verification_link"
    RESOLVING_FROM_QUERY_PARAMS = "resolving_from_query_params"
    FETCHING_CLIENT_METADATA = "fetching_client_metadata"
    CROSS_VALIDATING = "cross_validating"
    NORMALIZING = "normalizing"
    RESOLVED = "resolved"
    FAILED = "failed"


class RelierConfigBuilder:
    """
    Accumulates validated relier fields until the resolution flow can freeze them.
    """

    def __init__(self) -> None:
        self._fields: dict[str, Any] = {}

    def set(self, values: Mapping[str, Any]) -> "RelierConfigBuilder":
        self._fields.update(values)
        return self

    def get(self, name: str) -> Any:
        return self._fields.get(name)

    def has(self, name: str) -> bool:
        return self._fields.get(name) is not None

    def build(self) -> RelierConfig:
        try:
            return RelierConfig(**self._fields)
        except ValidationError as e:
            raise CoreasonRelierError(f"Relier configuration is inconsistent: {e}") from e


class OAuthRelier:
    """
    Resolves and holds the OAuth relier for one authentication attempt.

    Attributes:
        state (ResolutionState): Where the resolution flow currently is.
        error (Exception | None): The terminal error once FAILED.
        uid (str | None): The account identity the relier currently knows about.
    """

    def __init__(
        self,
        search_params: Mapping[str, str],
        *,
        client_registry: ClientRegistry,
        session: SessionStore,
        config: CoreasonRelierConfig,
        uid: str | None = None,
    ) -> None:
        """
        Initialize the OAuthRelier.

        Args:
            search_params: The request's query parameters.
            client_registry: Source of registered client metadata.
            session: Session storage holding a pending OAuth context, if any.
            config: The configuration object.
            uid: Account identity supplied by the page, if any.
        """
        self._search_params = dict(search_params)
        self._client_registry = client_registry
        self._session = session
        self._settings = config
        self._builder = RelierConfigBuilder()
        self._config: RelierConfig | None = None
        self.state = ResolutionState.INIT
        self.error: Exception | None = None
        self.uid = uid

    @property
    def config(self) -> RelierConfig:
        """The resolved configuration. Only available once `fetch()` succeeded."""
        if self._config is None:
            raise CoreasonRelierError(f"Relier is not resolved (state={self.state})")
        return self._config

    def get_search_param(self, name: str) -> str | None:
        return self._search_params.get(name) or None

    def _transition(self, state: ResolutionState) -> None:
        logger.debug(f"Relier resolution: {self.state} -> {state}")
        self.state = state

    async def fetch(self) -> RelierConfig:
        """
        Runs the resolution flow.

        Returns:
            RelierConfig: The frozen configuration.

        Raises:
            InvalidParameterError: If a parameter is malformed, `service` is passed
                outside a verification flow, or no permission survives normalization.
            MissingParameterError: If a required parameter is absent.
            UnknownClientError: If the client registry does not know the client.
            IncorrectRedirectError: If the requested redirect_uri is not the registered one.
            CoreasonRelierError: If called more than once, or for collaborator failures.
        """
        if self.state != ResolutionState.INIT:
            raise CoreasonRelierError(f"Relier resolution already ran (state={self.state})")

        with tracer.start_as_current_span("relier.fetch") as span:
            try:
                self._transition(ResolutionState.DETECTING_FLOW_KIND)
                verification_flow = self._is_verification_flow()
                span.set_attribute("relier.verification_flow", verification_flow)

                if verification_flow:
                    self._setup_verification_flow()
                else:
                    self._setup_signin_signup_flow()

                if not self._builder.has("service"):
                    self._builder.set({"service": self._builder.get("client_id")})

                await self._setup_oauth_rp_info(verification_flow)

                if self._builder.has("scope"):
                    # depends on `trusted`, set by _setup_oauth_rp_info
                    self._normalize_scopes_and_permissions()

                self._config = self._builder.build()
            except Exception as e:
                self.error = e
                self._transition(ResolutionState.FAILED)
                logger.warning(f"Relier resolution failed: {getattr(e, 'kind', type(e).__name__)} ({e})")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            self._transition(ResolutionState.RESOLVED)
            span.set_attribute("relier.client_id", self._config.client_id)
            span.set_status(Status(StatusCode.OK))
            return self._config

    def _is_verification_flow(self) -> bool:
        return self.get_search_param("code") is not None

    def _setup_verification_flow(self) -> None:
        self._transition(ResolutionState.RESOLVING_FROM_VERIFICATION_LINK)
        resume_obj = self._session.oauth
        fallback = resume_obj is None
        if resume_obj is None:
            # Verifying in a second browser: only `service` is known. It lets the
            # user get back to the relier, never to sign in to it.
            service = self.get_search_param("service")
            resume_obj = {"client_id": service, "service": service}

        result = transform_using_schema(resume_obj, VERIFICATION_INFO_SCHEMA)
        self._builder.set(result)
        self._builder.set({"service_fallback": fallback})

    def _setup_signin_signup_flow(self) -> None:
        self._transition(ResolutionState.RESOLVING_FROM_QUERY_PARAMS)
        # `service` belongs to the verification flow; a relier may not set it.
        if self.get_search_param("service") is not None:
            raise InvalidParameterError("service")

        result = transform_using_schema(self._search_params, SIGNIN_SIGNUP_QUERY_PARAM_SCHEMA)
        self._builder.set(result)

    async def _setup_oauth_rp_info(self, verification_flow: bool) -> None:
        self._transition(ResolutionState.FETCHING_CLIENT_METADATA)
        requested_client_id = self._builder.get("client_id")
        query_redirect_uri = self._builder.get("redirect_uri")

        try:
            service_info = await self._client_registry.get_client_info(requested_client_id)
        except InvalidParameterError as e:
            if e.field == "client_id":
                logger.warning("Client registry rejected client_id, reporting unknown client")
                raise UnknownClientError(requested_client_id) from e
            raise

        result = transform_using_schema(service_info, CLIENT_INFO_SCHEMA)
        metadata = ClientMetadata(**result)

        if not verification_flow:
            self._transition(ResolutionState.CROSS_VALIDATING)
            if metadata.redirect_uri != query_redirect_uri:
                raise IncorrectRedirectError()

        self._builder.set(metadata.model_dump())

    def _normalize_scopes_and_permissions(self) -> None:
        self._transition(ResolutionState.NORMALIZING)
        normalized = normalize_scopes(
            self._builder.get("scope"),
            trusted=bool(self._builder.get("trusted")),
            wants_consent=self._builder.get("prompt") == OAuthPrompt.CONSENT,
            expandable_scope=self._settings.trusted_profile_scope,
            expansion=self._settings.trusted_profile_scope_expansion,
            untrusted_allowed=self._settings.untrusted_allowed_permissions,
        )
        self._builder.set({"scope": normalized.scope, "permissions": normalized.permissions})

    def is_oauth(self) -> bool:
        return True

    def is_trusted(self) -> bool:
        return self.config.trusted

    def wants_consent(self) -> bool:
        """`True` if the relier sets `prompt=consent`."""
        return self.config.prompt == OAuthPrompt.CONSENT

    def set_uid(self, uid: str | None) -> None:
        self.uid = uid

    def account_needs_permissions(self, account: Account) -> bool:
        """
        Check whether additional permissions must be granted by `account`.

        Only permissions for which the account holds a value are considered.

        Args:
            account: The signed-in account.

        Returns:
            bool: `True` if the permissions screen must be shown.
        """
        config = self.config
        if config.service_fallback:
            return False
        if config.trusted and not self.wants_consent():
            return False

        applicable = account.get_permissions_with_values(config.permissions)
        return not account.has_seen_permissions(config.client_id, applicable)

    def wants_keys(self) -> bool:
        """
        Check whether the relier wants access to the account encryption keys.

        Raises:
            InvalidParameterError: If a key-bearing scope is requested from an
                unregistered redirect_uri, or keys are requested without any key-bearing scope.
        """
        if not self._settings.scoped_keys_enabled:
            return False
        config = self.config
        if config.service_fallback or not config.keys_jwk:
            return False
        if not config.scope:
            raise InvalidParameterError("scope")

        validation = self._settings.scoped_keys_validation
        found_match = False
        for scope in scope_str_to_list(config.scope):
            rule = validation.get(scope)
            if rule is None:
                continue
            if config.redirect_uri not in rule.redirect_uris:
                raise InvalidParameterError("redirect_uri")
            found_match = True

        if not found_match:
            raise InvalidParameterError("scope")
        return True
