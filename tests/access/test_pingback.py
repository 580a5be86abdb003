"""
Unit tests for PingbackReporter.
"""
import unittest
from unittest.mock import AsyncMock

from accessgate.access.analytics import AccessAnalytics
from accessgate.access.config import resolve_access_config
from accessgate.access.errors import PingbackError
from accessgate.access.pingback import PingbackReporter
from accessgate.access.reader import InMemoryReaderIdSource, ReaderIdentity

from fakes import FakeTransport

CONFIG = {
    "authorization": "https://pub.example/auth?rid=READER_ID",
    "pingback": "https://pub.example/pingback?rid=READER_ID&uid=AUTHDATA(user.id)",
    "login": "https://pub.example/login",
}


class TestPingbackReporter(unittest.IsolatedAsyncioTestCase):
    def _reporter(self, raw=CONFIG, response=None):
        self.events = []
        self.transport = FakeTransport()
        self.bus = AsyncMock()
        self.identity = ReaderIdentity(InMemoryReaderIdSource())
        return PingbackReporter(
            resolve_access_config(raw),
            reader_identity=self.identity,
            transport=self.transport,
            bus=self.bus,
            analytics=AccessAnalytics(self.events.append),
            auth_data=lambda: response,
        )

    async def test_sends_signal_then_broadcasts(self):
        reporter = self._reporter(response={"user": {"id": 42}})
        await reporter.report_view()
        reader_id = await self.identity.get()
        self.assertEqual(
            self.transport.signals,
            [f"https://pub.example/pingback?rid={reader_id}&uid=42"],
        )
        self.bus.broadcast_reauthorize.assert_awaited_once()
        self.assertEqual(self.events, ["access-pingback-sent"])

    async def test_missing_authdata_expands_to_empty(self):
        reporter = self._reporter(response=None)
        await reporter.report_view()
        self.assertTrue(self.transport.signals[0].endswith("&uid="))

    async def test_failure_raises_without_broadcast(self):
        reporter = self._reporter()
        self.transport.signal_error = ConnectionError("reset")
        with self.assertRaises(PingbackError):
            await reporter.report_view()
        self.bus.broadcast_reauthorize.assert_not_awaited()
        self.assertEqual(self.events, ["access-pingback-failed"])

    async def test_no_pingback_url_is_noop(self):
        reporter = self._reporter(raw={"type": "other", "authorizationFallbackResponse": {}})
        await reporter.report_view()
        self.assertEqual(self.transport.signals, [])
        self.bus.broadcast_reauthorize.assert_not_awaited()
        self.assertEqual(self.events, [])
