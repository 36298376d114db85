"""
WhatsApp Command Bot - Webhook Server Tests

Uses Flask's test client with a bot whose loop manager is mocked.
"""

import asyncio
import unittest
from unittest.mock import MagicMock

from wabot.bot import WhatsAppBot
from wabot.webhook_server import AsyncLoopManager, create_flask_app, extract_events

from tests.fixtures import FakeSession, MemoryPermissionStore, make_event, make_settings


class TestExtractEvents(unittest.TestCase):

    def test_shapes(self):
        event = make_event(".ping")
        self.assertEqual(extract_events(event), [event])
        self.assertEqual(extract_events([event, event]), [event, event])
        self.assertEqual(extract_events({"messages": [event]}), [event])
        self.assertEqual(extract_events("nonsense"), [])


class TestWebhookServer(unittest.TestCase):
    """Tests for the Flask routes."""

    def setUp(self):
        self.bot = WhatsAppBot(make_settings(), FakeSession(), MemoryPermissionStore())
        self.loop_manager = MagicMock()
        self.loop_manager.is_running = True
        self.app = create_flask_app(self.bot, self.loop_manager, secret_token="s3cret")
        self.client = self.app.test_client()

    def _post(self, payload, token="s3cret"):
        headers = {"X-Webhook-Token": token} if token else {}
        return self.client.post("/whatsapp-webhook", json=payload, headers=headers)

    def test_single_event_is_queued(self):
        event = make_event(".ping")

        response = self._post(event)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"status": "ok", "queued": 1})
        self.loop_manager.call_soon.assert_called_once_with(self.bot.submit_event, event)

    def test_batch_is_queued(self):
        response = self._post({"messages": [make_event(".a"), make_event(".b")]})

        self.assertEqual(response.get_json()["queued"], 2)
        self.assertEqual(self.loop_manager.call_soon.call_count, 2)

    def test_wrong_token_rejected(self):
        self.assertEqual(self._post(make_event(".ping"), token="nope").status_code, 403)
        self.assertEqual(self._post(make_event(".ping"), token=None).status_code, 403)
        self.loop_manager.call_soon.assert_not_called()

    def test_invalid_payload(self):
        response = self.client.post(
            "/whatsapp-webhook", data="not json", headers={"X-Webhook-Token": "s3cret"}
        )
        self.assertEqual(response.status_code, 400)

    def test_loop_not_running(self):
        self.loop_manager.is_running = False
        self.assertEqual(self._post(make_event(".ping")).status_code, 503)

    def test_queue_failure(self):
        self.loop_manager.call_soon.side_effect = RuntimeError("loop closed")
        self.assertEqual(self._post(make_event(".ping")).status_code, 500)

    def test_no_token_configured(self):
        app = create_flask_app(self.bot, self.loop_manager, secret_token=None)
        response = app.test_client().post("/whatsapp-webhook", json=make_event(".ping"))
        self.assertEqual(response.status_code, 200)

    def test_root(self):
        data = self.client.get("/").get_json()
        self.assertEqual(data["status"], "ok")
        self.assertEqual(data["service"], "TestBot")

    def test_health(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        # The bot has not been started in this test
        self.assertEqual(data["status"], "degraded")
        self.assertEqual(data["components"]["bot"], "not_started")
        self.assertEqual(data["components"]["permission_store"], "not_loaded")

    def test_status(self):
        data = self.client.get("/status").get_json()

        self.assertEqual(data["stats"]["messages_received"], 0)
        self.assertEqual(data["plugins"], {})

    def test_unknown_route(self):
        self.assertEqual(self.client.get("/nope").status_code, 404)
        self.assertEqual(self.client.get("/whatsapp-webhook").status_code, 405)


class TestAsyncLoopManager(unittest.TestCase):

    def test_run_and_stop(self):
        manager = AsyncLoopManager()
        manager.start()
        try:
            self.assertEqual(manager.run(asyncio.sleep(0, result=7), timeout=5), 7)
        finally:
            manager.stop()

        self.assertFalse(manager.is_running)

    def test_events_are_dispatched_on_the_loop(self):
        bot = WhatsAppBot(make_settings(), FakeSession(), MemoryPermissionStore())
        manager = AsyncLoopManager()
        manager.start()
        try:
            manager.run(bot.start([]), timeout=5)
            manager.call_soon(bot.submit_event, make_event("hello"))
            manager.run(asyncio.sleep(0.05), timeout=5)
            manager.run(bot.dispatcher.drain(), timeout=5)
        finally:
            manager.stop()

        self.assertEqual(bot.stats()["messages_received"], 1)


if __name__ == "__main__":
    unittest.main()
