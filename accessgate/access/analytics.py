"""
Access analytics: every lifecycle event goes to the log and the access_events_total counter.
Hosts with an analytics transport pass a sink; it is called after local recording.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from accessgate.utils.metrics import access_events_total

logger = logging.getLogger(__name__)

EventSink = Callable[[str], None]


class AccessAnalytics:
    def __init__(self, sink: EventSink | None = None, *, document_id: str | None = None) -> None:
        self._sink = sink
        self._document_id = document_id

    def trigger_event(self, event: str) -> None:
        access_events_total.labels(event=event).inc()
        logger.info("access_event", extra={"event": event, "document_id": self._document_id})
        if self._sink is not None:
            self._sink(event)

    def login_event(self, variant: str, event: str) -> None:
        """access-login-<event>, plus access-login-<variant>-<event> for named variants."""
        self.trigger_event(f"access-login-{event}")
        if variant:
            self.trigger_event(f"access-login-{variant}-{event}")
