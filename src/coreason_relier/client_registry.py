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
Client registry lookups against the OAuth server.
"""

from typing import Any, Protocol
from urllib.parse import quote

import anyio
import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_relier.config import CoreasonRelierConfig
from coreason_relier.exceptions import (
    CoreasonRelierError,
    IncorrectRedirectError,
    InvalidParameterError,
    OversizedResponseError,
    TransportError,
    UnknownClientError,
)
from coreason_relier.transport import ServerError, safe_json_fetch
from coreason_relier.utils.logger import logger

# OAuth server errnos
ERRNO_UNKNOWN_CLIENT = 101
ERRNO_INCORRECT_REDIRECT = 103
ERRNO_INVALID_PARAMETER = 109


class ClientRegistry(Protocol):
    """Resolves registered client metadata by client_id."""

    async def get_client_info(self, client_id: str) -> dict[str, Any]: ...


def to_oauth_error(error: ServerError, client_id: str | None = None) -> CoreasonRelierError:
    """
    Maps an OAuth server error response onto the relier error taxonomy.

    Errors the taxonomy does not name are returned unchanged.
    """
    payload = error.payload
    if payload.errno == ERRNO_INVALID_PARAMETER:
        keys = payload.validation.keys if payload.validation else []
        return InvalidParameterError(keys[0] if keys else "unknown")
    if payload.errno == ERRNO_UNKNOWN_CLIENT:
        return UnknownClientError(client_id)
    if payload.errno == ERRNO_INCORRECT_REDIRECT:
        return IncorrectRedirectError()
    return error


class OAuthClientRegistry:
    """
    Fetches client metadata from `GET {oauth_url}/v1/client/{client_id}`.

    Transport failures are retried up to 3 times with exponential backoff
    (initial=0.1s, max=1.0s). Server answers, including errors, are not retried.
    """

    def __init__(self, config: CoreasonRelierConfig, client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the OAuthClientRegistry.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, one is created and owned.
        """
        self.config = config
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.http_timeout)
        HTTPXClientInstrumentor().instrument_client(self._client)

    async def __aenter__(self) -> "OAuthClientRegistry":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def get_client_info(self, client_id: str) -> dict[str, Any]:
        """
        Fetches the raw client metadata.

        Args:
            client_id: The OAuth client id.

        Returns:
            dict[str, Any]: The registry's JSON record (`id`, `name`, `image_uri`, `redirect_uri`, `trusted`).

        Raises:
            InvalidParameterError: If the server rejects a parameter (keyed on the offending field).
            UnknownClientError: If the server does not know the client.
            TransportError: If the server cannot be reached or answers garbage.
        """
        url = f"{self.config.oauth_url}/v1/client/{quote(client_id, safe='')}"
        attempts = 3
        wait_initial = 0.1
        wait_max = 1.0

        for attempt in range(attempts):
            try:
                data = await safe_json_fetch(self._client, url)
            except ServerError as e:
                mapped = to_oauth_error(e, client_id)
                if mapped is e:
                    raise
                raise mapped from e
            except OversizedResponseError:
                raise
            except httpx.HTTPError as e:
                if attempt == attempts - 1:
                    raise TransportError(f"Failed to fetch client info from {url}: {e}") from e
                logger.warning(f"Client info fetch failed (attempt {attempt + 1}/{attempts}): {e}")
                await anyio.sleep(min(wait_initial * (2**attempt), wait_max))
                continue

            if not isinstance(data, dict):
                raise TransportError(f"Invalid client info response from {url}")
            return data

        raise TransportError(f"Failed to fetch client info from {url}")  # pragma: no cover
