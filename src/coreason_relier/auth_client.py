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
Authentication service client: account login and unblock emails.
"""

from enum import StrEnum
from typing import Any, Protocol, TypeVar

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from pydantic import SecretStr, ValidationError

from coreason_relier.config import CoreasonRelierConfig
from coreason_relier.exceptions import AuthError, AuthErrorKind, TransportError
from coreason_relier.models import Account, VerificationMethod, VerificationReason
from coreason_relier.models_internal import LoginResponse
from coreason_relier.relier import OAuthRelier
from coreason_relier.transport import ServerError, safe_json_fetch
from coreason_relier.utils.logger import anonymize, logger

PROTOCOL_NAMESPACE = "identity.mozilla.com/picl/v1/"


class AuthenticationService(Protocol):
    """Authentication collaborator consumed by the sign-in orchestrator."""

    async def sign_in_account(
        self,
        account: Account,
        password: str | None,
        relier: OAuthRelier,
        *,
        resume: str | None = None,
        unblock_code: str | None = None,
        verification_method: VerificationMethod | None = None,
    ) -> Account: ...

    async def send_unblock_email(self, account: Account) -> None: ...


def quick_stretch_auth_pw(email: str, password: str) -> str:
    """
    Derives the hex `authPW` sent to the server instead of the password
    (PBKDF2-SHA256, 1000 rounds, salted with the email, then HKDF-SHA256).
    """
    salt = f"{PROTOCOL_NAMESPACE}quickStretch:{email}".encode("utf-8")
    stretched = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=1000).derive(
        password.encode("utf-8")
    )
    auth_pw = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"\x00",
        info=f"{PROTOCOL_NAMESPACE}authPW".encode("utf-8"),
    ).derive(stretched)
    return auth_pw.hex()


E = TypeVar("E", bound=StrEnum)


def _parse_enum(enum_cls: type[E], value: str | None) -> E | None:
    if not value:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        logger.warning(f"Unrecognized {enum_cls.__name__} from auth server: {value!r}")
        return None


def to_auth_error(error: ServerError) -> AuthError:
    payload = error.payload
    return AuthError.from_errno(
        payload.errno,
        message=payload.message,
        verification_method=payload.verification_method,
        verification_reason=payload.verification_reason,
    )


class AuthServerClient:
    """
    Talks to the authentication server's account endpoints.
    """

    def __init__(self, config: CoreasonRelierConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the AuthServerClient.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, one is created and owned.
        """
        self.config = config
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.http_timeout)
        HTTPXClientInstrumentor().instrument_client(self._client)

    async def __aenter__(self) -> "AuthServerClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.config.auth_url}{path}"
        try:
            return await safe_json_fetch(self._client, url, method=method, **kwargs)
        except ServerError as e:
            raise to_auth_error(e) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    async def sign_in_account(
        self,
        account: Account,
        password: str | None,
        relier: OAuthRelier,
        *,
        resume: str | None = None,
        unblock_code: str | None = None,
        verification_method: VerificationMethod | None = None,
    ) -> Account:
        """
        Signs `account` in, with `password` or, failing that, its existing session token.

        The account is updated in place with the server's answer and returned.

        Raises:
            AuthError: If the server rejects the sign-in.
            TransportError: If the server cannot be reached.
        """
        salt = self.config.pii_salt.get_secret_value()
        if password:
            if not account.email:
                raise AuthError(AuthErrorKind.UNEXPECTED_ERROR, "Account has no email")
            body: dict[str, Any] = {
                "email": account.email,
                "authPW": quick_stretch_auth_pw(account.email, password),
                "reason": "signin",
                "service": relier.config.service,
            }
            if resume:
                body["resume"] = resume
            if unblock_code:
                body["unblockCode"] = unblock_code
            if verification_method:
                body["verificationMethod"] = str(verification_method)

            data = await self._request("POST", "/v1/account/login", params={"keys": "false"}, json=body)
            try:
                login = LoginResponse(**data)
            except (TypeError, ValidationError) as e:
                raise TransportError(f"Invalid login response: {e}") from e

            # Parsed before the account is touched; unknown values route to the generic confirm step.
            verification_method = _parse_enum(VerificationMethod, login.verification_method)
            verification_reason = _parse_enum(VerificationReason, login.verification_reason)

            account.uid = login.uid
            account.session_token = SecretStr(login.session_token)
            account.verified = login.verified
            account.verification_method = verification_method
            account.verification_reason = verification_reason
        elif account.session_token is not None:
            token = account.session_token.get_secret_value()
            data = await self._request(
                "GET", "/v1/recovery_email/status", headers={"Authorization": f"Bearer {token}"}
            )
            if not isinstance(data, dict):
                raise TransportError("Invalid session status response")
            account.verified = bool(data.get("verified"))
            if not account.verified:
                account.verification_reason = VerificationReason.SIGN_IN
                account.verification_method = VerificationMethod.EMAIL
        else:
            raise AuthError(AuthErrorKind.UNEXPECTED_ERROR, "Neither password nor session token")

        logger.info(f"Account {anonymize(account.uid, salt)} signed in (verified={account.verified})")
        return account

    async def send_unblock_email(self, account: Account) -> None:
        """
        Sends the sign-in unblock code to the account's email.

        Raises:
            AuthError: If sending is refused (e.g. itself throttled).
            TransportError: If the server cannot be reached.
        """
        await self._request("POST", "/v1/account/login/send_unblock_code", json={"email": account.email})
        logger.info("Unblock email sent")
