"""
Pingback: report a confirmed view to the server, then tell peer documents to re-authorize.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from accessgate.access.analytics import AccessAnalytics
from accessgate.access.broadcast import BroadcastBus
from accessgate.access.errors import PingbackError
from accessgate.access.models import AccessConfig
from accessgate.access.ports import AuthorizationTransport, JsonTree
from accessgate.access.reader import ReaderIdentity

logger = logging.getLogger(__name__)


class PingbackReporter:
    def __init__(
        self,
        config: AccessConfig,
        *,
        reader_identity: ReaderIdentity,
        transport: AuthorizationTransport,
        bus: BroadcastBus,
        analytics: AccessAnalytics,
        auth_data: Callable[[], JsonTree | None],
    ) -> None:
        self.config = config
        self.reader_identity = reader_identity
        self.transport = transport
        self.bus = bus
        self.analytics = analytics
        self.auth_data = auth_data

    async def report_view(self) -> None:
        """No-op without a pingback URL. Raises PingbackError on failure; never retries."""
        if not self.config.pingback_url:
            logger.debug("access_pingback_ignored")
            return
        try:
            url = await self.reader_identity.build_url(self.config.pingback_url, auth_data=self.auth_data)
            logger.debug("access_pingback_start", extra={"url": url})
            await self.transport.send_signal(url)
        except Exception as e:
            self.analytics.trigger_event("access-pingback-failed")
            logger.error("access_pingback_failed", extra={"error": str(e) or type(e).__name__})
            raise PingbackError(f"Pingback failed: {e}", {"error": type(e).__name__}) from e
        self.analytics.trigger_event("access-pingback-sent")
        await self.bus.broadcast_reauthorize()
