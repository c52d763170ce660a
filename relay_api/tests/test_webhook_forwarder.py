import unittest

import httpx

from relay_api.services.webhook_forwarder import WebhookForwarder
from relay_api.streaming.event_frames import parse_event_payload
from relay_api.tests.fake_backend import WEBHOOK_URL, FakeBackend


class TestWebhookForwarder(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.backend = FakeBackend()
        self.client = httpx.AsyncClient(transport=self.backend.transport())

    async def asyncTearDown(self):
        await self.client.aclose()

    async def test_disabled_without_url(self):
        forwarder = WebhookForwarder(self.client, None)
        await forwarder.forward(parse_event_payload('{"a": 1}'), "conn-1", "task-1")
        self.assertFalse(forwarder.enabled)
        self.assertEqual(self.backend.webhook_bodies, [])

    async def test_envelope(self):
        # Arrange
        forwarder = WebhookForwarder(self.client, WEBHOOK_URL)

        # Act
        await forwarder.forward(parse_event_payload('{"method": "notifications/message"}'), "conn-1", "task-1")

        # Assert
        self.assertEqual(len(self.backend.webhook_bodies), 1)
        body = self.backend.webhook_bodies[0]
        self.assertEqual(body["event"], {"method": "notifications/message"})
        self.assertEqual(body["connectionId"], "conn-1")
        self.assertEqual(body["taskId"], "task-1")
        self.assertIn("timestamp", body)
        self.assertEqual(forwarder.delivered, 1)

    async def test_malformed_payload_is_forwarded_as_text(self):
        forwarder = WebhookForwarder(self.client, WEBHOOK_URL)
        await forwarder.forward(parse_event_payload("{oops"), "conn-1", "task-1")
        self.assertEqual(self.backend.webhook_bodies[0]["event"], "{oops")

    async def test_unreachable_webhook_is_logged_not_raised(self):
        self.backend.webhook_unreachable = True
        forwarder = WebhookForwarder(self.client, WEBHOOK_URL)
        with self.assertLogs("relay_api.services.webhook_forwarder", level="ERROR") as logs:
            await forwarder.forward(parse_event_payload('{"a": 1}'), "conn-1", "task-1")
        self.assertIn("Failed to forward event to webhook", logs.output[0])
        self.assertEqual(forwarder.failed, 1)

    async def test_error_status_is_logged_not_raised(self):
        self.backend.webhook_status = 503
        forwarder = WebhookForwarder(self.client, WEBHOOK_URL)
        with self.assertLogs("relay_api.services.webhook_forwarder", level="ERROR"):
            await forwarder.forward(parse_event_payload('{"a": 1}'), "conn-1", "task-1")
        self.assertEqual(forwarder.delivered, 0)
        self.assertEqual(forwarder.failed, 1)
