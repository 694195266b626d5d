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
Session storage for the pending OAuth verification context, and resume tokens.
"""

import base64
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from coreason_relier.models import Account


class SessionStore(Protocol):
    """Holds at most one pending OAuth context, read when a verification link is followed."""

    @property
    def oauth(self) -> dict[str, Any] | None: ...


class MemorySessionStore:
    """
    In-memory SessionStore. One instance per browser session.
    """

    def __init__(self, oauth: dict[str, Any] | None = None) -> None:
        self._oauth = dict(oauth) if oauth else None

    @property
    def oauth(self) -> dict[str, Any] | None:
        return dict(self._oauth) if self._oauth is not None else None

    def set_oauth(self, oauth: dict[str, Any]) -> None:
        """Replaces any pending OAuth context."""
        self._oauth = dict(oauth)

    def clear_oauth(self) -> None:
        self._oauth = None


class ResumeToken(BaseModel):
    """
    State carried through email verification so the user can resume where they left off.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    unique_user_id: str | None = Field(default=None, alias="uniqueUserId")
    entrypoint: str | None = None
    utm_campaign: str | None = Field(default=None, alias="utmCampaign")
    utm_content: str | None = Field(default=None, alias="utmContent")
    utm_medium: str | None = Field(default=None, alias="utmMedium")
    utm_source: str | None = Field(default=None, alias="utmSource")
    utm_term: str | None = Field(default=None, alias="utmTerm")

    def stringify(self) -> str:
        body = self.model_dump_json(by_alias=True, exclude_none=True)
        return base64.b64encode(body.encode("utf-8")).decode("ascii")

    @classmethod
    def parse(cls, token: str) -> "ResumeToken":
        return cls.model_validate_json(base64.b64decode(token))


def stringified_resume_token(account: Account, **extra: str | None) -> str:
    """Builds the resume token sent along with a sign-in request for `account`."""
    return ResumeToken(unique_user_id=account.uid, **extra).stringify()
