"""
Unit tests for HttpAuthorizationTransport over httpx.MockTransport.
"""
import unittest

import httpx

from accessgate.access.transport import HttpAuthorizationTransport


class TestHttpAuthorizationTransport(unittest.IsolatedAsyncioTestCase):
    def _transport(self, handler):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(record))
        self.addAsyncCleanup(client.aclose)
        return HttpAuthorizationTransport(client=client)

    async def test_fetch_json_returns_object(self):
        transport = self._transport(lambda request: httpx.Response(200, json={"subscriber": True}))
        data = await transport.fetch_json("https://pub.example/auth?rid=r1")
        self.assertEqual(data, {"subscriber": True})
        request = self.requests[0]
        self.assertEqual(request.method, "GET")
        self.assertEqual(request.headers["accept"], "application/json")

    async def test_fetch_json_rejects_non_object(self):
        transport = self._transport(lambda request: httpx.Response(200, json=[1, 2]))
        with self.assertRaises(ValueError):
            await transport.fetch_json("https://pub.example/auth")

    async def test_fetch_json_raises_on_server_error(self):
        transport = self._transport(lambda request: httpx.Response(503, json={"error": "down"}))
        with self.assertRaises(httpx.HTTPStatusError):
            await transport.fetch_json("https://pub.example/auth")

    async def test_send_signal_posts_empty_form(self):
        transport = self._transport(lambda request: httpx.Response(200))
        await transport.send_signal("https://pub.example/pingback?rid=r1")
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(str(request.url), "https://pub.example/pingback?rid=r1")
        self.assertEqual(request.headers["content-type"], "application/x-www-form-urlencoded")
        self.assertEqual(request.content, b"")

    async def test_send_signal_raises_on_server_error(self):
        transport = self._transport(lambda request: httpx.Response(500))
        with self.assertRaises(httpx.HTTPStatusError):
            await transport.send_signal("https://pub.example/pingback")

    async def test_lazy_client_carries_reader_cookies(self):
        transport = HttpAuthorizationTransport(cookies={"sid": "abc"})
        self.addAsyncCleanup(transport.aclose)
        self.assertEqual(transport.client.cookies.get("sid"), "abc")
        self.assertIs(transport.client, transport.client)
