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
OAuth relier resolution and sign-in orchestration for the accounts front end.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .auth_client import AuthServerClient
from .broker import BaseBroker, NavigateBehavior, OAuthRedirectBroker, SyncBroker
from .client_registry import OAuthClientRegistry
from .config import CoreasonRelierConfig
from .exceptions import AuthError, CoreasonRelierError, RelierValidationError
from .models import Account, RelierConfig, SignInOutcome
from .relier import OAuthRelier
from .session import MemorySessionStore
from .signin import SignInOrchestrator

__all__ = [
    "Account",
    "AuthError",
    "AuthServerClient",
    "BaseBroker",
    "CoreasonRelierConfig",
    "CoreasonRelierError",
    "MemorySessionStore",
    "NavigateBehavior",
    "OAuthClientRegistry",
    "OAuthRedirectBroker",
    "OAuthRelier",
    "RelierConfig",
    "RelierValidationError",
    "SignInOrchestrator",
    "SignInOutcome",
    "SyncBroker",
]
