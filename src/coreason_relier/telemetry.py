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
Sign-in telemetry events.
"""

from typing import Protocol

from opentelemetry import trace

from coreason_relier.utils.logger import logger


class EventLogger(Protocol):
    def log_event(self, name: str) -> None: ...

    def log_view_event(self, name: str) -> None: ...

    def log_flow_event(self, event: str, view_name: str) -> None: ...


class SpanEventLogger:
    """
    Records events on the current OpenTelemetry span and as log lines.

    One instance per view; `events` keeps what this view emitted.

    Attributes:
        view_name (str): Screen the events are attributed to by `log_view_event`.
        events (list[str]): Event names emitted so far, in order.
    """

    def __init__(self, view_name: str) -> None:
        self.view_name = view_name
        self.events: list[str] = []

    def _emit(self, name: str) -> None:
        self.events.append(name)
        trace.get_current_span().add_event(name)
        logger.info(f"event: {name}")

    def log_event(self, name: str) -> None:
        self._emit(name)

    def log_view_event(self, name: str) -> None:
        self._emit(f"screen.{self.view_name}.{name}")

    def log_flow_event(self, event: str, view_name: str) -> None:
        self._emit(f"flow.{view_name}.{event}")
