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
Brokers: capability sets and hooks describing how a host integration handles sign-in.
"""

from enum import StrEnum
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from coreason_relier.exceptions import CoreasonRelierError
from coreason_relier.models import Account
from coreason_relier.utils.logger import logger


class Capability(StrEnum):
    REUSE_EXISTING_SESSION = "reuse_existing_session"
    ALLOW_UID_CHANGE = "allow_uid_change"


class NullBehavior(BaseModel):
    """Do nothing further; the view decides."""

    model_config = ConfigDict(frozen=True)

    type: Literal["null"] = "null"


class NavigateBehavior(BaseModel):
    """Navigate to `endpoint` once the broker step completes."""

    model_config = ConfigDict(frozen=True)

    type: Literal["navigate"] = "navigate"
    endpoint: str
    data: dict[str, Any] = Field(default_factory=dict)


class HaltBehavior(BaseModel):
    """Stop; control has been handed to the host (e.g. a browser's sync engine)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["halt"] = "halt"
    data: dict[str, Any] = Field(default_factory=dict)


Behavior = NullBehavior | NavigateBehavior | HaltBehavior


class Broker(Protocol):
    """Capability collaborator consumed by the sign-in orchestrator."""

    def has_capability(self, name: str) -> bool: ...

    async def invoke_method(self, name: str, *args: Any) -> Any: ...

    def set_behavior(self, method_name: str, behavior: Behavior, data: dict[str, Any] | None = None) -> None: ...


class BaseBroker:
    """
    Default integration: plain web sign-in.

    Hooks are async methods named in `HOOKS`. A behavior registered with
    `set_behavior` replaces the hook's result for its next invocation only.
    """

    HOOKS: frozenset[str] = frozenset({"before_sign_in", "after_sign_in", "after_sign_in_confirmation_poll"})

    default_capabilities: dict[str, bool] = {
        Capability.REUSE_EXISTING_SESSION: False,
        Capability.ALLOW_UID_CHANGE: False,
    }

    def __init__(self, capabilities: dict[str, bool] | None = None) -> None:
        self._capabilities = {**self.default_capabilities, **(capabilities or {})}
        self._behaviors: dict[str, Behavior] = {}

    def has_capability(self, name: str) -> bool:
        return bool(self._capabilities.get(name, False))

    def set_capability(self, name: str, value: bool) -> None:
        self._capabilities[name] = value

    def set_behavior(self, method_name: str, behavior: Behavior, data: dict[str, Any] | None = None) -> None:
        if method_name not in self.HOOKS:
            raise CoreasonRelierError(f"Unknown broker method: {method_name}")
        if data and isinstance(behavior, NavigateBehavior):
            behavior = behavior.model_copy(update={"data": {**behavior.data, **data}})
        self._behaviors[method_name] = behavior

    async def invoke_method(self, name: str, *args: Any) -> Any:
        if name not in self.HOOKS:
            raise CoreasonRelierError(f"Unknown broker method: {name}")
        result = await getattr(self, name)(*args)
        override = self._behaviors.pop(name, None)
        if override is not None:
            logger.debug(f"Broker {type(self).__name__}.{name} result overridden by {override.type} behavior")
            return override
        return result

    async def before_sign_in(self, account: Account) -> Behavior:
        return NullBehavior()

    async def after_sign_in(self, account: Account) -> Behavior:
        return NavigateBehavior(endpoint="settings")

    async def after_sign_in_confirmation_poll(self, account: Account) -> Behavior:
        return await self.after_sign_in(account)


class OAuthRedirectBroker(BaseBroker):
    """
    OAuth web flow: the session is kept and the user is redirected back to the relier.
    """

    default_capabilities = {
        **BaseBroker.default_capabilities,
        Capability.REUSE_EXISTING_SESSION: True,
    }

    def __init__(self, redirect_uri: str | None = None, capabilities: dict[str, bool] | None = None) -> None:
        super().__init__(capabilities)
        self.redirect_uri = redirect_uri

    async def after_sign_in(self, account: Account) -> Behavior:
        if not self.redirect_uri:
            return await super().after_sign_in(account)
        return NavigateBehavior(endpoint=self.redirect_uri, data={"uid": account.uid})


class SyncBroker(BaseBroker):
    """
    Browser sync integration: the browser takes over the session token, so every
    sign-in mints a fresh one, and the account uid may change under the browser.

    One instance per sign-in flow.

    Attributes:
        handed_off (list[str]): uids handed to the browser by this flow, in order.
    """

    default_capabilities = {
        **BaseBroker.default_capabilities,
        Capability.REUSE_EXISTING_SESSION: False,
        Capability.ALLOW_UID_CHANGE: True,
    }

    def __init__(self, capabilities: dict[str, bool] | None = None) -> None:
        super().__init__(capabilities)
        self.handed_off: list[str] = []

    async def after_sign_in(self, account: Account) -> Behavior:
        if account.uid:
            self.handed_off.append(account.uid)
        return HaltBehavior(data={"uid": account.uid, "verified": account.verified})
