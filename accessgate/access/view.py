"""
View detection: IDLE -> SCHEDULED -> WAITING -> VIEWED | CANCELED.

While WAITING, four triggers race on one one-shot future: document hidden (cancel),
time_to_view elapsed, scroll, single tap. The first one disarms all the others.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any

from accessgate.access.analytics import AccessAnalytics
from accessgate.access.authorization import AuthorizationEngine
from accessgate.access.errors import AccessError, ViewCancelled
from accessgate.access.models import ViewState
from accessgate.access.pingback import PingbackReporter
from accessgate.access.ports import HostDocument, Unlisten

logger = logging.getLogger(__name__)


@dataclass
class ViewSession:
    """One scheduling cycle: its listeners, armed triggers and background tasks."""

    time_to_view_ms: int
    viewed: bool = False
    reported: bool = False
    closed: bool = False
    trigger: asyncio.Future | None = None
    report: asyncio.Task | None = None
    triggers: list[Unlisten] = field(default_factory=list)
    listeners: list[Unlisten] = field(default_factory=list)
    tasks: set[asyncio.Task] = field(default_factory=set)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def arm(self, unlisten: Unlisten) -> None:
        self.triggers.append(unlisten)

    def disarm(self) -> None:
        """Release every armed trigger at once; safe to call repeatedly."""
        triggers, self.triggers = self.triggers, []
        for unlisten in triggers:
            unlisten()

    @property
    def cancelling(self) -> bool:
        return (
            self.trigger is not None
            and self.trigger.done()
            and self.trigger.result() is ViewState.CANCELED
        )

    def close(self) -> None:
        self.closed = True
        self.disarm()
        listeners, self.listeners = self.listeners, []
        for unlisten in listeners:
            unlisten()
        for task in list(self.tasks):
            # A report already past the view (pingback in flight) is left to finish.
            if task is self.report and self.viewed:
                continue
            task.cancel()


class ViewDetector:
    def __init__(
        self,
        document: HostDocument,
        engine: AuthorizationEngine,
        reporter: PingbackReporter,
        analytics: AccessAnalytics,
    ) -> None:
        self.document = document
        self.engine = engine
        self.reporter = reporter
        self.analytics = analytics
        self.state = ViewState.IDLE
        self.session: ViewSession | None = None

    def schedule_view(self, time_to_view_ms: int) -> ViewSession:
        """
        Start a new view cycle, replacing the previous one.
        time_to_view_ms=0 registers the view immediately (follows a direct user action).
        """
        if self.session is not None:
            self.session.close()
        session = ViewSession(time_to_view_ms=time_to_view_ms)
        self.session = session
        self.state = ViewState.SCHEDULED
        session.spawn(self._start_cycle(session))
        return session

    async def _start_cycle(self, session: ViewSession) -> None:
        await self.document.when_ready()
        if session.closed:
            return
        if self.document.is_visible():
            self.report_when_viewed(session)
        session.listeners.append(
            self.document.on_visibility_changed(lambda: self._on_visibility_changed(session))
        )

    def _on_visibility_changed(self, session: ViewSession) -> None:
        if not session.closed and self.document.is_visible():
            self.report_when_viewed(session)

    def report_when_viewed(self, session: ViewSession) -> asyncio.Task:
        """At most one report per session is in flight; a cancelled one may be re-armed."""
        report = session.report
        if report is not None and not report.done() and not session.cancelling:
            return report
        if session.reported:
            return report
        session.report = session.spawn(self._report(session))
        return session.report

    async def _report(self, session: ViewSession) -> None:
        logger.debug("access_view_monitoring", extra={"time_to_view_ms": session.time_to_view_ms})
        try:
            await self.when_viewed(session)
        except ViewCancelled:
            if self.session is session:
                self.state = ViewState.CANCELED
            if session.report is asyncio.current_task():
                session.report = None
            logger.debug("access_view_cancelled")
            return
        session.viewed = True
        if self.session is session:
            self.state = ViewState.VIEWED
        # Report against the most recent authorization.
        await asyncio.shield(self.engine.last_authorization)
        self.analytics.trigger_event("access-viewed")
        try:
            await self.reporter.report_view()
        except AccessError as e:
            if session.report is asyncio.current_task():
                session.report = None
            logger.warning("access_view_report_failed", extra={"error": str(e)})
            return
        session.reported = True

    async def when_viewed(self, session: ViewSession) -> None:
        """Resolves when a view occurred; raises ViewCancelled when the document is hidden first."""
        if session.time_to_view_ms == 0:
            return

        loop = asyncio.get_running_loop()
        trigger = loop.create_future()
        session.trigger = trigger

        def settle(state: ViewState) -> None:
            if trigger.done():
                return
            trigger.set_result(state)
            session.disarm()

        def on_visibility() -> None:
            if not self.document.is_visible():
                settle(ViewState.CANCELED)

        # 1. Document hidden again: cancel.
        session.arm(self.document.on_visibility_changed(on_visibility))
        # 2. Dwell time elapsed.
        handle = loop.call_later(session.time_to_view_ms / 1000, settle, ViewState.VIEWED)
        session.arm(handle.cancel)
        # 3. Scroll.
        session.arm(self.document.on_scroll(lambda: settle(ViewState.VIEWED)))
        # 4. Tap.
        session.arm(self.document.on_click_once(lambda: settle(ViewState.VIEWED)))
        # Hidden between the visibility check and arming: the hide event was missed.
        if not self.document.is_visible():
            settle(ViewState.CANCELED)

        if self.session is session:
            self.state = ViewState.WAITING
        try:
            result = await trigger
        finally:
            session.disarm()
        if result is ViewState.CANCELED:
            raise ViewCancelled()
