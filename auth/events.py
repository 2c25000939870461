"""
auth/events.py -- Optional session-event publishing.

SessionService takes an optional publisher at construction. When it is
None nothing is published; there is no per-call capability probing.

Publishers are notified after the operation has committed. A publisher that
raises does not undo or fail the operation -- SessionService logs the
exception and carries on.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger("mediashare.auth.events")

USER_REGISTERED = "user.registered"
USER_LOGGED_IN = "user.logged_in"
USER_LOGGED_OUT = "user.logged_out"
USER_LOGGED_OUT_ALL = "user.logged_out_all"


@dataclass(frozen=True)
class SessionEvent:
    name: str
    user_id: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


class SessionEventPublisher(Protocol):
    def publish(self, event: SessionEvent) -> None: ...


class LoggingEventPublisher:
    """Publisher that writes each event to the log. Enabled by LOG_SESSION_EVENTS=true."""

    def publish(self, event: SessionEvent) -> None:
        logger.info("event=%s user_id=%s metadata=%s", event.name, event.user_id, event.metadata)
