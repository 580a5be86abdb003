"""
Unit tests for LoginCoordinator: dedup window, outcome handling, re-authorization.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

import pytest

from accessgate.access.analytics import AccessAnalytics
from accessgate.access.config import resolve_access_config
from accessgate.access.errors import LoginError
from accessgate.access.login import LoginCoordinator, parse_login_result
from accessgate.access.models import LoginOutcome
from accessgate.access.reader import InMemoryReaderIdSource, ReaderIdentity

from fakes import FakeDialog

CONFIG = {
    "authorization": "https://pub.example/auth?rid=READER_ID",
    "pingback": "https://pub.example/pingback?rid=READER_ID",
    "login": {
        "": "https://pub.example/login?rid=READER_ID",
        "signup": "https://pub.example/signup?rid=READER_ID&plan=AUTHDATA(plan)",
    },
}


@pytest.mark.parametrize(
    "result,expected",
    [
        ("#success=true", LoginOutcome.SUCCESS),
        ("success=yes", LoginOutcome.SUCCESS),
        ("?success=1&x=2", LoginOutcome.SUCCESS),
        ("#success=false", LoginOutcome.REJECTED),
        ("success=no", LoginOutcome.REJECTED),
        ("#success=", LoginOutcome.UNKNOWN),
        ("", LoginOutcome.UNKNOWN),
        (None, LoginOutcome.UNKNOWN),
    ],
)
def test_parse_login_result(result, expected):
    assert parse_login_result(result) is expected


def test_rejected_does_not_reauthorize():
    assert LoginOutcome.SUCCESS.reauthorizes
    assert LoginOutcome.UNKNOWN.reauthorizes
    assert not LoginOutcome.REJECTED.reauthorizes


class TestLoginCoordinator(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.now = 0.0
        self.events = []
        self.dialog = FakeDialog()
        self.engine = MagicMock()
        self.engine.response = {"plan": "gold plus"}
        self.engine.run_authorization = AsyncMock()
        self.view_detector = MagicMock()
        self.bus = AsyncMock()
        self.coordinator = LoginCoordinator(
            resolve_access_config(CONFIG),
            reader_identity=ReaderIdentity(InMemoryReaderIdSource()),
            dialog=self.dialog,
            engine=self.engine,
            view_detector=self.view_detector,
            bus=self.bus,
            analytics=AccessAnalytics(self.events.append),
            clock=lambda: self.now,
        )
        await self.coordinator.build_login_urls()

    async def test_login_urls_expand_reader_id_and_authdata(self):
        urls = self.coordinator.state.resolved_urls
        self.assertEqual(set(urls), {"", "signup"})
        self.assertNotIn("READER_ID", urls[""])
        self.assertTrue(urls["signup"].endswith("&plan=gold%20plus"))

    async def test_success_reauthorizes_and_views_immediately(self):
        outcome = await self.coordinator.login()
        self.assertIs(outcome, LoginOutcome.SUCCESS)
        self.assertEqual(self.dialog.opened, [self.coordinator.state.resolved_urls[""]])
        self.bus.broadcast_reauthorize.assert_awaited_once()
        self.engine.run_authorization.assert_awaited_once_with(disable_fallback=True)
        self.view_detector.schedule_view.assert_called_once_with(0)
        self.assertIsNone(self.coordinator.state.pending)
        self.assertEqual(self.events, ["access-login-started", "access-login-success"])

    async def test_rejected_login_does_nothing_further(self):
        self.dialog.result = "#success=no"
        outcome = await self.coordinator.login()
        self.assertIs(outcome, LoginOutcome.REJECTED)
        self.bus.broadcast_reauthorize.assert_not_awaited()
        self.engine.run_authorization.assert_not_awaited()
        self.view_detector.schedule_view.assert_not_called()
        self.assertIn("access-login-rejected", self.events)

    async def test_empty_result_still_reauthorizes(self):
        self.dialog.result = ""
        outcome = await self.coordinator.login()
        self.assertIs(outcome, LoginOutcome.UNKNOWN)
        self.engine.run_authorization.assert_awaited_once_with(disable_fallback=True)
        self.view_detector.schedule_view.assert_called_once_with(0)

    async def test_named_variant_emits_variant_events(self):
        await self.coordinator.login("signup")
        self.assertIn("access-login-signup-started", self.events)
        self.assertIn("access-login-signup-success", self.events)

    async def test_second_call_within_window_returns_pending_attempt(self):
        self.dialog.gate = asyncio.Event()
        first = self.coordinator.login()
        self.now = 500
        second = self.coordinator.login("signup")
        self.assertIs(first, second)
        self.dialog.gate.set()
        await first
        self.assertEqual(len(self.dialog.opened), 1)

    async def test_new_attempt_allowed_after_window(self):
        self.dialog.gate = asyncio.Event()
        first = self.coordinator.login()
        self.now = 1000
        second = self.coordinator.login()
        self.assertIsNot(first, second)
        self.assertIs(self.coordinator.state.pending, second)
        self.dialog.gate.set()
        await asyncio.gather(first, second)
        self.assertEqual(len(self.dialog.opened), 2)
        self.assertIsNone(self.coordinator.state.pending)

    async def test_dialog_failure_raises_and_clears_pending(self):
        self.dialog.result = RuntimeError("popup blocked")
        task = self.coordinator.login()
        with self.assertRaises(LoginError):
            await task
        self.assertIsNone(self.coordinator.state.pending)
        self.assertIn("access-login-failed", self.events)
        self.engine.run_authorization.assert_not_awaited()
        # The next attempt is not deduplicated against the failed one.
        self.dialog.result = "success=true"
        self.assertIs(await self.coordinator.login(), LoginOutcome.SUCCESS)

    async def test_unconfigured_variant_raises(self):
        with self.assertRaises(LoginError):
            self.coordinator.login("missing")
        self.assertIsNone(self.coordinator.state.pending)
        self.assertEqual(self.dialog.opened, [])

    async def test_url_not_ready_raises(self):
        self.coordinator.state.resolved_urls.clear()
        with self.assertRaises(LoginError):
            self.coordinator.login()
