"""
WhatsApp Command Bot - Session and Retry Tests
"""

import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import requests

from wabot.services.retry_service import (
    RetryConfig,
    RetryError,
    RetryService,
    RetryStrategy,
)
from wabot.session import BridgeSession, SessionError, build_payload

from tests.fixtures import USER_JID


def response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.content = b"{}" if body is not None else b""
    resp.json.return_value = body
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


class TestBuildPayload(unittest.TestCase):

    def test_text_is_wrapped(self):
        self.assertEqual(
            build_payload(USER_JID, "hi"),
            {"jid": USER_JID, "content": {"text": "hi"}},
        )

    def test_dict_is_forwarded_with_quote(self):
        quoted = {"key": {"id": "Q"}}
        payload = build_payload(USER_JID, {"image": {"url": "x"}}, quoted)
        self.assertEqual(payload["content"], {"image": {"url": "x"}})
        self.assertIs(payload["quoted"], quoted)

    def test_unsupported_content(self):
        with self.assertRaises(SessionError):
            build_payload(USER_JID, 42)


@patch("wabot.services.retry_service.asyncio.sleep", new_callable=AsyncMock)
class TestBridgeSession(unittest.IsolatedAsyncioTestCase):
    """Tests for BridgeSession with the HTTP layer mocked."""

    def setUp(self):
        self.session = BridgeSession("http://bridge.test/", token="tok", max_attempts=3)
        self.session._http = MagicMock()
        self.session._http.headers = {}

    async def test_send_posts_payload(self, mock_sleep):
        self.session._http.post.return_value = response(body={"key": {"id": "SENT"}})

        result = await self.session.send_message(USER_JID, "hello")

        self.assertEqual(result, {"key": {"id": "SENT"}})
        self.session._http.post.assert_called_once_with(
            "http://bridge.test/send",
            json={"jid": USER_JID, "content": {"text": "hello"}},
            timeout=15.0,
        )

    async def test_connection_errors_are_retried(self, mock_sleep):
        self.session._http.post.side_effect = [
            requests.ConnectionError("refused"),
            response(),
        ]

        result = await self.session.send_message(USER_JID, "hello")

        self.assertIsNone(result)
        self.assertEqual(self.session._http.post.call_count, 2)
        mock_sleep.assert_awaited_once()

    async def test_gives_up_after_max_attempts(self, mock_sleep):
        self.session._http.post.side_effect = requests.Timeout("slow")

        with self.assertRaises(SessionError):
            await self.session.send_message(USER_JID, "hello")

        self.assertEqual(self.session._http.post.call_count, 3)

    async def test_http_errors_are_not_retried(self, mock_sleep):
        self.session._http.post.return_value = response(status=400)

        with self.assertRaises(SessionError):
            await self.session.send_message(USER_JID, "hello")

        self.assertEqual(self.session._http.post.call_count, 1)

    async def test_auth_header(self, mock_sleep):
        session = BridgeSession("http://bridge.test", token="tok")
        self.assertEqual(session._http.headers["Authorization"], "Bearer tok")
        await session.close()

    def test_fetch_bot_jid(self, mock_sleep):
        self.session._http.get.return_value = response(body={"jid": "123@s.whatsapp.net"})

        self.assertEqual(self.session.fetch_bot_jid(), "123@s.whatsapp.net")

    def test_fetch_bot_jid_failure_keeps_previous(self, mock_sleep):
        self.session.bot_jid = "old@s.whatsapp.net"
        self.session._http.get.side_effect = requests.ConnectionError("down")

        self.assertEqual(self.session.fetch_bot_jid(), "old@s.whatsapp.net")

    def test_fetch_bot_jid_ignores_non_object_body(self, mock_sleep):
        self.session.bot_jid = "old@s.whatsapp.net"
        self.session._http.get.return_value = response(body=[{"jid": "123@s.whatsapp.net"}])

        self.assertEqual(self.session.fetch_bot_jid(), "old@s.whatsapp.net")


class TestRetryService(unittest.IsolatedAsyncioTestCase):

    async def test_non_retryable_raises_immediately(self):
        service = RetryService(RetryConfig(max_attempts=3, retryable_exceptions=(ConnectionError,)))
        func = AsyncMock(side_effect=ValueError("bad"))

        with self.assertRaises(ValueError):
            await service.execute_async(func)

        func.assert_awaited_once()

    @patch("wabot.services.retry_service.asyncio.sleep", new_callable=AsyncMock)
    async def test_retry_error_carries_last_exception(self, mock_sleep):
        service = RetryService(RetryConfig(max_attempts=2, jitter=False))
        error = ConnectionError("down")

        with self.assertRaises(RetryError) as ctx:
            await service.execute_async(AsyncMock(side_effect=error))

        self.assertIs(ctx.exception.last_exception, error)
        self.assertEqual(ctx.exception.attempts, 2)
        mock_sleep.assert_awaited_once_with(1.0)

    def test_delay_strategies(self):
        exponential = RetryService(RetryConfig(base_delay=1.0, jitter=False))
        self.assertEqual(exponential._calculate_delay(3), 4.0)

        linear = RetryService(RetryConfig(base_delay=1.0, jitter=False, strategy=RetryStrategy.LINEAR_BACKOFF))
        self.assertEqual(linear._calculate_delay(3), 3.0)

        capped = RetryService(RetryConfig(base_delay=10.0, max_delay=15.0, jitter=False))
        self.assertEqual(capped._calculate_delay(4), 15.0)


if __name__ == "__main__":
    unittest.main()
