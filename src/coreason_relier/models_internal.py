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
Internal data models for the coreason-relier package.
These are not exposed in the public API.
"""

from pydantic import BaseModel, ConfigDict, Field


class ServerValidation(BaseModel):
    """Joi-style validation details attached to 400 responses."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    source: str | None = None
    keys: list[str] = Field(default_factory=list)


class ServerErrorPayload(BaseModel):
    """
    Error body returned by the OAuth and authentication servers.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    code: int | None = Field(default=None, description="The HTTP status code echoed by the server.")
    errno: int | None = Field(default=None, description="The server-specific error number.")
    error: str | None = None
    message: str | None = None
    validation: ServerValidation | None = None
    verification_method: str | None = Field(default=None, alias="verificationMethod")
    verification_reason: str | None = Field(default=None, alias="verificationReason")


class LoginResponse(BaseModel):
    """
    Successful response of the account login endpoint.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    uid: str
    session_token: str = Field(..., alias="sessionToken")
    verified: bool = False
    verification_method: str | None = Field(default=None, alias="verificationMethod")
    verification_reason: str | None = Field(default=None, alias="verificationReason")
