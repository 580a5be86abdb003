"""
Login flow: one dialog at a time (1s dedup window), re-authorization and an immediate view on success.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from urllib.parse import parse_qs

from accessgate.access.analytics import AccessAnalytics
from accessgate.access.authorization import AuthorizationEngine
from accessgate.access.broadcast import BroadcastBus
from accessgate.access.config import get_login_dedup_window_ms
from accessgate.access.errors import LoginError
from accessgate.access.models import AccessConfig, LoginOutcome
from accessgate.access.ports import JsonTree, LoginDialog
from accessgate.access.reader import ReaderIdentity
from accessgate.access.view import ViewDetector
from accessgate.utils.metrics import access_login_total

logger = logging.getLogger(__name__)

_SUCCESS_VALUES = frozenset({"true", "yes", "1"})


def parse_login_result(result: str | None) -> LoginOutcome:
    """
    `success` field of the dialog's query-string payload.
    An empty/absent value is UNKNOWN, which still re-authorizes: dialogs that do not
    report a status must not look like a rejection.
    """
    query = parse_qs((result or "").lstrip("?#"), keep_blank_values=True)
    value = (query.get("success") or [""])[0]
    if value in _SUCCESS_VALUES:
        return LoginOutcome.SUCCESS
    if value:
        return LoginOutcome.REJECTED
    return LoginOutcome.UNKNOWN


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class LoginState:
    pending: asyncio.Task | None = None
    started_at: float | None = None
    resolved_urls: dict[str, str] = field(default_factory=dict)


class LoginCoordinator:
    def __init__(
        self,
        config: AccessConfig,
        *,
        reader_identity: ReaderIdentity,
        dialog: LoginDialog,
        engine: AuthorizationEngine,
        view_detector: ViewDetector,
        bus: BroadcastBus,
        analytics: AccessAnalytics,
        clock: Callable[[], float] | None = None,
        dedup_window_ms: int | None = None,
    ) -> None:
        self.config = config
        self.reader_identity = reader_identity
        self.dialog = dialog
        self.engine = engine
        self.view_detector = view_detector
        self.bus = bus
        self.analytics = analytics
        self.clock = clock or _monotonic_ms
        self.dedup_window_ms = dedup_window_ms or get_login_dedup_window_ms()
        self.state = LoginState()

    async def build_login_urls(self, response: JsonTree | None = None) -> dict[str, str]:
        """Resolve every configured login URL (AUTHDATA vars read the current response)."""
        login_map = self.config.login_map
        if not login_map:
            return {}
        names = list(login_map)
        urls = await asyncio.gather(*(
            self.reader_identity.build_url(login_map[name], auth_data=lambda: self.engine.response)
            for name in names
        ))
        self.state.resolved_urls.update(zip(names, urls))
        return dict(self.state.resolved_urls)

    def login(self, variant: str = "") -> asyncio.Task:
        """
        Run the login dialog for variant ("" is the default login URL).

        A call within dedup_window_ms of a pending attempt returns that same task.
        After the window a new attempt is allowed, since a stuck dialog cannot always be detected.
        Raises LoginError right away if the variant has no configured or resolved URL.
        """
        now = self.clock()
        state = self.state
        if state.pending is not None and state.started_at is not None \
                and now - state.started_at < self.dedup_window_ms:
            access_login_total.labels(outcome="deduplicated").inc()
            return state.pending

        if variant not in self.config.login_map:
            raise LoginError(f"Login URL is not configured: {variant!r}", {"variant": variant})
        url = state.resolved_urls.get(variant)
        if not url:
            raise LoginError(f"Login URL is not ready: {variant!r}", {"variant": variant})

        logger.info("access_login_start", extra={"variant": variant})
        self.analytics.login_event(variant, "started")
        task = asyncio.ensure_future(self._run_login(variant, url))
        state.pending = task
        state.started_at = now
        return task

    def _clear_pending(self) -> None:
        if self.state.pending is asyncio.current_task():
            self.state.pending = None
            self.state.started_at = None

    async def _run_login(self, variant: str, url: str) -> LoginOutcome:
        try:
            result = await self.dialog.open(url)
        except Exception as e:
            logger.warning("access_login_failed", extra={"variant": variant, "error": str(e)})
            self.analytics.login_event(variant, "failed")
            access_login_total.labels(outcome="failed").inc()
            self._clear_pending()
            raise LoginError(f"Login dialog failed: {e}", {"variant": variant}) from e

        self._clear_pending()
        outcome = parse_login_result(result)
        logger.info("access_login_completed", extra={"variant": variant, "outcome": outcome.value})
        if outcome is LoginOutcome.SUCCESS:
            self.analytics.login_event(variant, "success")
        else:
            self.analytics.login_event(variant, "rejected")
        access_login_total.labels(outcome=outcome.value).inc()

        if outcome.reauthorizes:
            # A login may change the access profile: refresh peers, re-authorize
            # without fallback and count a new view right away.
            await self.bus.broadcast_reauthorize()
            await self.engine.run_authorization(disable_fallback=True)
            self.view_detector.schedule_view(0)
        return outcome
