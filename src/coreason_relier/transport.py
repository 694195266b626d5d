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
Size-capped JSON fetching shared by the HTTP collaborators.
"""

import json
from typing import Any

import httpx
from pydantic import ValidationError

from coreason_relier.exceptions import OversizedResponseError, TransportError
from coreason_relier.models_internal import ServerErrorPayload
from coreason_relier.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000


class ServerError(TransportError):
    """
    Raised when a server answers with a non-2xx status.

    Attributes:
        status_code (int): The HTTP status.
        payload (ServerErrorPayload): The parsed error body (empty if it was not JSON).
    """

    def __init__(self, status_code: int, payload: ServerErrorPayload) -> None:
        super().__init__(payload.message or f"Server responded with status {status_code}")
        self.status_code = status_code
        self.payload = payload


async def safe_json_fetch(client: httpx.AsyncClient, url: str, method: str = "GET", **kwargs: Any) -> Any:
    """
    Streams a response, refusing bodies larger than MAX_RESPONSE_BYTES, and decodes it as JSON.

    Args:
        client: The async HTTP client.
        url: The URL to fetch.
        method: The HTTP method.
        **kwargs: Passed through to `client.stream` (json, data, headers, ...).

    Returns:
        Any: The decoded JSON body.

    Raises:
        OversizedResponseError: If the body exceeds the size cap.
        ServerError: If the status is not 2xx.
        TransportError: If a successful body is not JSON.
        httpx.HTTPError: For network failures.
    """
    async with client.stream(method, url, **kwargs) as response:
        content_length = response.headers.get("Content-Length")
        if content_length:
            try:
                if int(content_length) > MAX_RESPONSE_BYTES:
                    raise OversizedResponseError("Response too large")
            except ValueError:
                pass

        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > MAX_RESPONSE_BYTES:
                raise OversizedResponseError("Response too large")

        status_code = response.status_code

    try:
        body = json.loads(content) if content else None
    except json.JSONDecodeError:
        body = None
        if 200 <= status_code < 300:
            raise TransportError(f"Invalid JSON response from {url}") from None

    if not 200 <= status_code < 300:
        try:
            payload = ServerErrorPayload(**body) if isinstance(body, dict) else ServerErrorPayload()
        except ValidationError:
            payload = ServerErrorPayload()
        logger.warning(f"{method} {url} failed with status {status_code} (errno={payload.errno})")
        raise ServerError(status_code, payload)

    return body
