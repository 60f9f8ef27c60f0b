"""Request-scoped state for widget reads and writes.

A ``WidgetRequestContext`` lives for exactly one request. It owns the
per-id_base snapshots returned by the consistency filter, the flag that
suspends that filter, the preview overlay's captured writes, and the phase
of the request pipeline. Nothing in it is shared between requests; ``close``
discards all of it.
"""
from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)


class Phase(enum.IntEnum):
    DISCOVER = 1
    SNAPSHOT = 2
    REGISTER = 3
    FILTER_ACTIVE = 4


class SnapshotState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    FILTERING_ACTIVE = "filtering_active"
    FILTERING_SUSPENDED = "filtering_suspended"


class WidgetRequestContext:
    def __init__(
        self,
        user=None,
        post_values: dict | None = None,
        *,
        action: str = "",
        widget_id: str = "",
    ):
        self.user = user
        self.post_values: dict[str, Any] = dict(post_values or {})
        self.action = action
        self.widget_id = widget_id
        self.phase = Phase.DISCOVER
        self.snapshots: dict = {}
        self.overlay = None
        self._captured: dict[str, Any] = {}
        self._capturing: set[str] = set()
        self._suspend_depth = 0
        self.closed = False

    def __repr__(self):
        return f"<WidgetRequestContext phase={self.phase.name} snapshots={sorted(self.snapshots)}>"

    # Pipeline

    def advance(self, phase: Phase) -> None:
        if phase < self.phase:
            raise RuntimeError(f"Cannot move request from {self.phase.name} back to {phase.name}.")
        self.phase = phase

    # Consistency filter

    @property
    def filtering_suspended(self) -> bool:
        return self._suspend_depth > 0

    @contextmanager
    def suspend_filtering(self):
        """Bypass the consistency filter to reach the literal stored values."""
        self._suspend_depth += 1
        try:
            yield self
        finally:
            self._suspend_depth -= 1

    def snapshot_state(self, id_base: str) -> SnapshotState:
        if id_base not in self.snapshots:
            return SnapshotState.UNINITIALIZED
        if self.filtering_suspended:
            return SnapshotState.FILTERING_SUSPENDED
        return SnapshotState.FILTERING_ACTIVE

    # Preview capture

    def is_capturing(self, id_base: str) -> bool:
        return id_base in self._capturing

    @contextmanager
    def capturing(self, id_base: str):
        already = id_base in self._capturing
        self._capturing.add(id_base)
        try:
            yield self
        finally:
            if not already:
                self._capturing.discard(id_base)

    def capture(self, option_name: str, value: Any) -> None:
        self._captured[option_name] = value

    def has_captured(self, option_name: str) -> bool:
        return option_name in self._captured

    def get_captured(self, option_name: str) -> Any:
        return self._captured.get(option_name)

    def close(self) -> None:
        if self._suspend_depth:
            logger.warning("Widget request context closed with filtering still suspended.")
        self.snapshots.clear()
        self._captured.clear()
        self._capturing.clear()
        self._suspend_depth = 0
        self.overlay = None
        self.closed = True
