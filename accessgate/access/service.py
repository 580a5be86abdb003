"""
AccessService: wires the access components for one host document and exposes the public API
(is_enabled, when_first_authorized, get_authdata_field, get_reader_id, login).

Services live as long as the host document. get_access_service keeps one per document id
in explicit process-wide state, created on first use and never torn down.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel

from accessgate.access.analytics import AccessAnalytics, EventSink
from accessgate.access.applier import AuthorizationApplier
from accessgate.access.authorization import AuthorizationEngine
from accessgate.access.broadcast import BroadcastBus
from accessgate.access.config import get_view_timeout_ms, resolve_access_config
from accessgate.access.expr import get_value_for_expr
from accessgate.access.login import LoginCoordinator
from accessgate.access.models import AccessConfig, RunState, ViewState
from accessgate.access.pingback import PingbackReporter
from accessgate.access.ports import (
    AuthorizationTransport,
    BroadcastChannel,
    HostDocument,
    LoginDialog,
    ReaderIdSource,
    TemplateRenderer,
    Unlisten,
    UrlExpander,
)
from accessgate.access.reader import ReaderIdentity
from accessgate.access.transport import HttpAuthorizationTransport
from accessgate.access.view import ViewDetector

logger = logging.getLogger(__name__)


class AccessStatus(BaseModel):
    """Snapshot of one service for introspection."""

    document_id: str | None
    enabled: bool
    type: str | None = None
    first_authorized: bool = False
    run_state: RunState | None = None
    view_state: ViewState | None = None
    login_pending: bool = False
    has_response: bool = False
    last_error: str | None = None


class AccessService:
    def __init__(
        self,
        document: HostDocument,
        config: AccessConfig | None,
        *,
        transport: AuthorizationTransport | None = None,
        reader_source: ReaderIdSource,
        dialog: LoginDialog,
        channel: BroadcastChannel,
        url_expander: UrlExpander | None = None,
        renderer: TemplateRenderer | None = None,
        analytics_sink: EventSink | None = None,
        clock: Callable[[], float] | None = None,
        document_id: str | None = None,
    ) -> None:
        self.document = document
        self.document_id = document_id
        self.config = config
        self.enabled = config is not None
        self.started = False
        self._tasks: set[asyncio.Future] = set()
        self._unlisten_broadcast: Unlisten | None = None
        if config is None:
            return

        self.origin = document.source_origin()
        self.analytics = AccessAnalytics(analytics_sink, document_id=document_id)
        self.reader_identity = ReaderIdentity(reader_source, url_expander)
        if transport is None:
            transport = HttpAuthorizationTransport()
        self.transport = transport
        self.bus = BroadcastBus(channel, self.origin)
        self.engine = AuthorizationEngine(
            config,
            document=document,
            reader_identity=self.reader_identity,
            transport=transport,
            applier=AuthorizationApplier(document, renderer),
            analytics=self.analytics,
        )
        self.reporter = PingbackReporter(
            config,
            reader_identity=self.reader_identity,
            transport=transport,
            bus=self.bus,
            analytics=self.analytics,
            auth_data=lambda: self.engine.response,
        )
        self.view_detector = ViewDetector(document, self.engine, self.reporter, self.analytics)
        self.login_coordinator = LoginCoordinator(
            config,
            reader_identity=self.reader_identity,
            dialog=dialog,
            engine=self.engine,
            view_detector=self.view_detector,
            bus=self.bus,
            analytics=self.analytics,
            clock=clock,
        )
        self.engine.add_response_listener(self.login_coordinator.build_login_urls)

    @classmethod
    def from_document(
        cls,
        document: HostDocument,
        raw_config: str | bytes | Mapping[str, Any] | None,
        **kwargs: Any,
    ) -> AccessService:
        """No config element -> disabled service. Invalid config raises ConfigError."""
        config = resolve_access_config(raw_config) if raw_config is not None else None
        return cls(document, config, **kwargs)

    def start(self) -> AccessService:
        """Build login URLs, start authorization and view monitoring, listen for peer broadcasts."""
        if not self.enabled:
            logger.info("access_disabled", extra={"document_id": self.document_id})
            return self
        if self.started:
            return self
        self.started = True
        logger.info(
            "access_start",
            extra={"document_id": self.document_id, "origin": self.origin, "state": self.config.type.value},
        )
        self._spawn(self.login_coordinator.build_login_urls())
        self.engine.run_authorization()
        self.view_detector.schedule_view(get_view_timeout_ms())
        self._unlisten_broadcast = self.bus.on_reauthorize_received(self.engine.run_authorization)
        return self

    def _spawn(self, coro: Any) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ----- public API -----

    def is_enabled(self) -> bool:
        return self.enabled

    async def when_first_authorized(self) -> None:
        """Resolves once the first authorization has settled (also after a failed first run)."""
        if not self.enabled:
            return
        await asyncio.shield(self.engine.first_authorization)

    async def get_authdata_field(self, field: str) -> Any:
        """Value of field in the most recent authorization response; None when absent or disabled."""
        if not self.enabled:
            return None
        await asyncio.shield(self.engine.last_authorization)
        response = self.engine.response
        if response is None:
            return None
        return get_value_for_expr(response, field)

    async def get_reader_id(self) -> str | None:
        if not self.enabled:
            return None
        return await self.reader_identity.get()

    def login(self, variant: str = "") -> asyncio.Task:
        if not self.enabled:
            raise RuntimeError("Access is disabled for this document")
        return self.login_coordinator.login(variant)

    def handle_action(self, method: str) -> asyncio.Task | None:
        """`login` -> default login URL, `login-<variant>` -> named login URL."""
        if method == "login":
            return self.login("")
        if method.startswith("login-"):
            return self.login(method[len("login-"):])
        logger.warning("access_unknown_action", extra={"event": method})
        return None

    def status(self) -> AccessStatus:
        if not self.enabled:
            return AccessStatus(document_id=self.document_id, enabled=False)
        error = self.engine.last_error
        return AccessStatus(
            document_id=self.document_id,
            enabled=True,
            type=self.config.type.value,
            first_authorized=self.engine.state.first_resolved,
            run_state=self.engine.run_state,
            view_state=self.view_detector.state,
            login_pending=self.login_coordinator.state.pending is not None,
            has_response=self.engine.response is not None,
            last_error=str(error) if error else None,
        )


# One service per host document, created on first use and kept for the process lifetime.
_services: dict[str, AccessService] = {}


def get_access_service(document_id: str, factory: Callable[[], AccessService] | None = None) -> AccessService:
    """Get or create (and start) the access service of a document."""
    if document_id not in _services:
        if factory is None:
            raise KeyError(f"No access service for document {document_id!r}")
        service = factory()
        service.document_id = service.document_id or document_id
        _services[document_id] = service.start()
    return _services[document_id]


def registered_services() -> dict[str, AccessService]:
    return dict(_services)
