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
Scope string normalization into an ordered permission list.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict

from coreason_relier.exceptions import InvalidParameterError


class NormalizedScopes(BaseModel):
    """
    Attributes:
        permissions (tuple[str, ...]): Deduplicated permissions in first-seen order.
        scope (str): The permissions joined by single spaces.
    """

    model_config = ConfigDict(frozen=True)

    permissions: tuple[str, ...]
    scope: str


def _unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def scope_str_to_list(scope: Any) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates. Non-strings yield []."""
    if not isinstance(scope, str):
        return []
    return _unique(scope.split())


def replace_item(items: Sequence[str], item: str, replacement: Sequence[str]) -> list[str]:
    """
    Remove every `item` and union `replacement` onto what remains.

    Returns `items` unchanged (as a list) when `item` is not present.
    """
    without = [i for i in items if i != item]
    if len(without) == len(items):
        return list(items)
    return _unique([*without, *replacement])


def sanitize_untrusted(permissions: Sequence[str], allowed: Iterable[str]) -> list[str]:
    allowed_set = set(allowed)
    return [p for p in permissions if p in allowed_set]


def normalize_scopes(
    scope: str,
    *,
    trusted: bool,
    wants_consent: bool,
    expandable_scope: str,
    expansion: Sequence[str],
    untrusted_allowed: Iterable[str],
) -> NormalizedScopes:
    """
    Normalize a raw scope string for a relier.

    Trusted reliers asking for consent get `expandable_scope` replaced by its
    `expansion`, so the consent screen can list each sub-scope. Untrusted reliers
    are restricted to `untrusted_allowed`.

    Args:
        scope: The raw space-delimited scope string.
        trusted: Whether the relier is trusted.
        wants_consent: Whether the relier asked for the consent prompt.
        expandable_scope: The scope token that expands (e.g. "profile").
        expansion: What `expandable_scope` expands to.
        untrusted_allowed: Permissions untrusted reliers may request.

    Returns:
        NormalizedScopes: The permission list and the re-joined scope string.

    Raises:
        InvalidParameterError: If no permission survives normalization.
    """
    permissions = scope_str_to_list(scope)
    if trusted:
        if wants_consent:
            permissions = replace_item(permissions, expandable_scope, expansion)
    else:
        permissions = sanitize_untrusted(permissions, untrusted_allowed)

    if not permissions:
        raise InvalidParameterError("scope")

    return NormalizedScopes(permissions=tuple(permissions), scope=" ".join(permissions))
