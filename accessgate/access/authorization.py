"""
Authorization engine: fetch-or-fallback flow and the first/last authorization ordering.

Run states: IDLE -> FETCHING -> APPLIED | FALLBACK_APPLIED | ERRORED (SKIPPED for type=other without server contact).
The first-authorization future resolves exactly once per engine and is never rejected.
The last-authorization future is the join of the first one and the latest run,
so no consumer observes a later run before the first has settled.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from accessgate.access.analytics import AccessAnalytics
from accessgate.access.applier import AuthorizationApplier
from accessgate.access.config import get_authorization_timeout_ms, is_proxy_origin
from accessgate.access.errors import AuthorizationError
from accessgate.access.models import AccessConfig, AccessType, RunState
from accessgate.access.ports import AuthorizationTransport, HostDocument, JsonTree
from accessgate.access.reader import ReaderIdentity
from accessgate.utils.metrics import access_authorization_total

logger = logging.getLogger(__name__)

LOADING_CLASS = "amp-access-loading"
ERROR_CLASS = "amp-access-error"

ResponseListener = Callable[[JsonTree], Awaitable[None]]


async def _join(first: asyncio.Future, run: asyncio.Future) -> None:
    # Shielded: cancelling a consumer of the join must not cancel the first future or the run.
    await asyncio.shield(first)
    await asyncio.shield(run)


class AuthorizationState:
    """
    Holds the latest applied response and the first/last authorization futures.
    Futures are created on first access, inside the running loop.
    """

    def __init__(self) -> None:
        self.response: JsonTree | None = None
        self._first: asyncio.Future | None = None
        self._last: asyncio.Future | None = None

    @property
    def first(self) -> asyncio.Future:
        if self._first is None:
            self._first = asyncio.get_running_loop().create_future()
        return self._first

    @property
    def last(self) -> asyncio.Future:
        # Before any run, "all authorization work so far" is the first authorization.
        return self._last if self._last is not None else self.first

    @property
    def first_resolved(self) -> bool:
        return self._first is not None and self._first.done()

    def resolve_first(self) -> bool:
        """Resolve the first authorization; later calls are no-ops. Returns True on the resolving call."""
        if self.first.done():
            return False
        self.first.set_result(None)
        return True

    def replace_response(self, response: JsonTree) -> bool:
        """Replace (never mutate) the current response; resolves the first authorization."""
        self.response = response
        return self.resolve_first()

    def track_run(self, run: asyncio.Future) -> asyncio.Future:
        self._last = asyncio.ensure_future(_join(self.first, run))
        return self._last


class AuthorizationEngine:
    def __init__(
        self,
        config: AccessConfig,
        *,
        document: HostDocument,
        reader_identity: ReaderIdentity,
        transport: AuthorizationTransport,
        applier: AuthorizationApplier,
        analytics: AccessAnalytics,
        timeout_ms: int | None = None,
    ) -> None:
        self.config = config
        self.document = document
        self.reader_identity = reader_identity
        self.transport = transport
        self.applier = applier
        self.analytics = analytics
        self.timeout_ms = timeout_ms or get_authorization_timeout_ms()
        self.is_proxy_origin = is_proxy_origin(document.location_url())
        self.state = AuthorizationState()
        self.run_state = RunState.IDLE
        self.last_error: AuthorizationError | None = None
        self.runs_started = 0
        self._response_listeners: list[ResponseListener] = []

    # ----- read side -----

    @property
    def response(self) -> JsonTree | None:
        return self.state.response

    @property
    def first_authorization(self) -> asyncio.Future:
        return self.state.first

    @property
    def last_authorization(self) -> asyncio.Future:
        return self.state.last

    def add_response_listener(self, listener: ResponseListener) -> None:
        """Called with every successfully obtained response, before it is applied."""
        self._response_listeners.append(listener)

    # ----- runs -----

    def _skips_server(self) -> bool:
        # type=other may use the fallback, but never from a proxy origin.
        return self.config.type is AccessType.OTHER and (
            self.config.fallback_response is None or self.is_proxy_origin
        )

    def run_authorization(self, disable_fallback: bool = False) -> asyncio.Future:
        """
        Start one authorization run and return its future.
        The future resolves to the final RunState and never raises (except on cancellation).
        """
        loop = asyncio.get_running_loop()
        if self._skips_server():
            logger.debug("access_authorization_skipped", extra={"state": self.config.type.value})
            if self.state.resolve_first():
                self.analytics.trigger_event("access-authorization-received")
            self.run_state = RunState.SKIPPED
            access_authorization_total.labels(outcome=RunState.SKIPPED.value).inc()
            done = loop.create_future()
            done.set_result(RunState.SKIPPED)
            return done

        if not self.config.authorization_url and self.config.fallback_response is None:
            raise AssertionError("type=other without authorization URL requires a fallback response")

        self.runs_started += 1
        self.document.toggle_class(LOADING_CLASS, True)
        run = asyncio.ensure_future(self._run(self.runs_started, disable_fallback))
        self.state.track_run(run)
        return run

    async def _run(self, run_id: int, disable_fallback: bool) -> RunState:
        self.run_state = RunState.FETCHING
        try:
            response, outcome = await self._obtain_response(disable_fallback)
            logger.debug("access_authorization_response", extra={"run": run_id, "outcome": outcome.value})
            if self.state.replace_response(response):
                self.analytics.trigger_event("access-authorization-received")
            self.document.toggle_class(LOADING_CLASS, False)
            self.document.toggle_class(ERROR_CLASS, False)
            for listener in self._response_listeners:
                await listener(response)
            await self.applier.apply(response)
        except Exception as e:
            error = e if isinstance(e, AuthorizationError) else AuthorizationError(
                f"Authorization failed: {e}", {"error": type(e).__name__}
            )
            logger.error(
                "access_authorization_failed",
                extra={"run": run_id, "error": str(error)},
            )
            self.document.toggle_class(LOADING_CLASS, False)
            self.document.toggle_class(ERROR_CLASS, True)
            self.last_error = error
            # Never reject: consumers of the first authorization must progress.
            self.state.resolve_first()
            outcome = RunState.ERRORED
        self.run_state = outcome
        access_authorization_total.labels(outcome=outcome.value).inc()
        return outcome

    async def _obtain_response(self, disable_fallback: bool) -> tuple[JsonTree, RunState]:
        fallback = self.config.fallback_response
        if not self.config.authorization_url:
            logger.debug("access_authorization_fallback_only")
            return self.config.fallback_copy(), RunState.FALLBACK_APPLIED

        start = time.monotonic()
        try:
            url = await self.reader_identity.build_url(self.config.authorization_url)
            logger.debug("access_authorization_start", extra={"url": url})
            response = await asyncio.wait_for(
                self.transport.fetch_json(url),
                timeout=self.timeout_ms / 1000,
            )
            return response, RunState.APPLIED
        except Exception as e:
            self.analytics.trigger_event("access-authorization-failed")
            latency_ms = int((time.monotonic() - start) * 1000)
            reason = "timeout" if isinstance(e, asyncio.TimeoutError) else str(e) or type(e).__name__
            if fallback is not None and not disable_fallback:
                logger.warning(
                    "access_authorization_fallback",
                    extra={"error": reason, "latency_ms": latency_ms},
                )
                return self.config.fallback_copy(), RunState.FALLBACK_APPLIED
            raise AuthorizationError(
                f"Authorization failed: {reason}",
                {"error": reason, "latency_ms": latency_ms},
            ) from e
