# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_relier

from typing import Any
from unittest.mock import AsyncMock

import pytest

from coreason_relier.config import CoreasonRelierConfig
from coreason_relier.session import MemorySessionStore

CLIENT_ID = "dcdb5ae7add825d2"
REDIRECT_URI = "https://relier.example.com/oauth/complete"


@pytest.fixture
def config() -> CoreasonRelierConfig:
    return CoreasonRelierConfig(
        http_timeout=5.0,
        untrusted_allowed_permissions=("openid", "profile:email", "profile:display_name", "profile:uid"),
    )


@pytest.fixture
def client_info() -> dict[str, Any]:
    """Registry record of an untrusted client."""
    return {
        "id": CLIENT_ID,
        "name": "Relier",
        "image_uri": "",
        "redirect_uri": REDIRECT_URI,
        "trusted": False,
    }


@pytest.fixture
def registry(client_info: dict[str, Any]) -> AsyncMock:
    mock = AsyncMock()
    mock.get_client_info.return_value = client_info
    return mock


@pytest.fixture
def session() -> MemorySessionStore:
    return MemorySessionStore()
