"""HTTP tests for the relay gateway. The backend and the webhook are served by httpx.MockTransport."""
import json
import time
import unittest
from datetime import datetime

from fastapi.testclient import TestClient

from relay_api.api import create_app
from relay_api.config import RelaySettings
from relay_api.models import TaskResult
from relay_api.streaming.sse_sink import DiscardSink
from relay_api.tests.fake_backend import (
    STREAM_URL,
    WEBHOOK_URL,
    FakeBackend,
    completion_event,
    notification,
    sse_frame,
)


def make_settings(**overrides) -> RelaySettings:
    values = dict(
        mcp_server_url=STREAM_URL,
        task_timeout_seconds=5.0,
        task_poll_interval_seconds=0.05,
        housekeeping_interval_seconds=60.0,
    )
    values.update(overrides)
    return RelaySettings(**values)


def make_client(backend: FakeBackend, **overrides) -> TestClient:
    app = create_app(make_settings(**overrides), transport=backend.transport())
    return TestClient(app)


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestPerform(unittest.TestCase):
    def test_find_docs_scenario(self):
        # Arrange
        backend = FakeBackend([
            sse_frame(notification({"status": "searching"})),
            sse_frame(completion_event({"answer": 42})),
        ])

        with make_client(backend) as client:
            # Act
            response = client.post("/api/perform", json={"message": "find docs"})

            # Assert
            self.assertEqual(response.status_code, 200)
            body = response.json()
            self.assertEqual(body["status"], "completed")
            self.assertEqual(body["result"], {"answer": 42, "done": True})
            timestamp = datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00"))
            self.assertIsNotNone(timestamp.tzinfo)

            task_id = body["taskId"]
            self.assertEqual(backend.dispatched_task_ids, [task_id])
            self.assertEqual(
                json.loads(backend.dispatch_requests[0].content),
                {"method": "perform_search", "params": {"task": "find docs"}},
            )
            self.assertIsNone(client.app.state.correlator.try_consume(task_id))
            self.assertEqual(client.get("/health").json()["pendingTasks"], 0)

    def test_missing_message_is_rejected_before_any_upstream_call(self):
        backend = FakeBackend()
        with make_client(backend) as client:
            for kwargs in [{"json": {}}, {"json": {"message": ""}}, {"json": {"message": "   "}}, {}]:
                response = client.post("/api/perform", **kwargs)
                self.assertEqual(response.status_code, 400, kwargs)
                self.assertEqual(response.json()["error"], "Message is required")
        self.assertEqual(backend.stream_requests, [])
        self.assertEqual(backend.dispatch_requests, [])

    def test_invalid_body_is_rejected(self):
        backend = FakeBackend()
        with make_client(backend) as client:
            response = client.post("/api/perform", content="not json", headers={"content-type": "application/json"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid request body")
        self.assertEqual(backend.stream_requests, [])

    def test_timeout_returns_408_and_late_completion_is_not_retrievable(self):
        # Arrange
        backend = FakeBackend([sse_frame(notification({"status": "still working"}))], hold_open=True)

        with make_client(backend, task_timeout_seconds=0.3) as client:
            # Act
            response = client.post("/api/perform", json={"message": "find docs"})
            task_id = backend.dispatched_task_ids[0]
            correlator = client.app.state.correlator
            accepted = correlator.record(task_id, TaskResult(task_id=task_id, result={"done": True}))

            # Assert
            self.assertEqual(response.status_code, 408)
            self.assertEqual(response.json()["error"], "Task timeout")
            self.assertFalse(accepted)
            self.assertIsNone(correlator.try_consume(task_id))
            self.assertEqual(client.get("/health").json()["pendingTasks"], 0)

    def test_dispatch_failure_returns_500(self):
        backend = FakeBackend(dispatch_status=500)
        with make_client(backend) as client:
            response = client.post("/api/perform", json={"message": "find docs"})
            self.assertEqual(response.status_code, 500)
            self.assertEqual(response.json()["error"], "Failed to perform action")
            self.assertTrue(wait_until(lambda: client.get("/health").json()["connections"] == 0))

    def test_stream_connection_failure_returns_500_without_dispatch(self):
        backend = FakeBackend(stream_status=502)
        with make_client(backend) as client:
            response = client.post("/api/perform", json={"message": "find docs"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Failed to perform action")
        self.assertEqual(backend.dispatch_requests, [])

    def test_unreachable_webhook_does_not_affect_the_result(self):
        backend = FakeBackend([sse_frame(completion_event({"answer": 42}))], webhook_unreachable=True)
        with self.assertLogs("relay_api.services.webhook_forwarder", level="ERROR"):
            with make_client(backend, webhook_url=WEBHOOK_URL) as client:
                response = client.post("/api/perform", json={"message": "find docs"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["result"]["answer"], 42)

    def test_events_are_forwarded_to_the_webhook(self):
        backend = FakeBackend([
            sse_frame(notification({"status": "searching"})),
            sse_frame(completion_event({"answer": 42})),
        ])
        with make_client(backend, webhook_url=WEBHOOK_URL) as client:
            response = client.post("/api/perform", json={"message": "find docs"})
            task_id = response.json()["taskId"]
            self.assertTrue(wait_until(lambda: len(backend.webhook_bodies) == 2))
        self.assertTrue(all(body["taskId"] == task_id for body in backend.webhook_bodies))
        self.assertEqual(backend.webhook_bodies[1]["event"]["params"]["data"]["result"]["answer"], 42)


class TestSubscribe(unittest.TestCase):
    def test_missing_task_id(self):
        backend = FakeBackend()
        with make_client(backend) as client:
            response = client.get("/sse")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Task ID is required")
        self.assertEqual(backend.stream_requests, [])

    def test_upstream_failure_returns_500_json(self):
        backend = FakeBackend(stream_status=503)
        with make_client(backend) as client:
            response = client.get("/sse", params={"taskId": "task-1"})
            self.assertEqual(response.status_code, 500)
            self.assertEqual(response.json()["error"], "Failed to establish SSE connection")
            self.assertEqual(client.get("/health").json()["connections"], 0)

    def test_relays_events_verbatim(self):
        # Arrange
        backend = FakeBackend(
            [
                sse_frame('{"n": 1}'),
                b"event: ping\n\n",
                sse_frame("{broken"),
                sse_frame(completion_event({"answer": 42})),
            ],
            wait_for_dispatch=False,
        )

        with make_client(backend) as client:
            # Act
            response = client.get("/sse", params={"taskId": "task-1"})

            # Assert
            self.assertEqual(response.status_code, 200)
            self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
            self.assertEqual(response.headers["cache-control"], "no-cache")
            body = response.text
            first = body.index('data: {"n": 1}\n\n')
            second = body.index(f"data: {completion_event({'answer': 42})}\n\n")
            self.assertLess(first, second)
            self.assertNotIn("broken", body)
            self.assertNotIn("ping", body)
            self.assertEqual(backend.stream_requests[0].headers["X-Task-Id"], "task-1")
            self.assertTrue(wait_until(lambda: client.get("/health").json()["connections"] == 0))
            self.assertEqual(client.app.state.correlator.try_consume("task-1").result["answer"], 42)


class TestHealth(unittest.TestCase):
    def test_health(self):
        with make_client(FakeBackend()) as client:
            response = client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "connections": 0, "pendingTasks": 0})

    def test_health_counts_live_connections_and_pending_tasks(self):
        backend = FakeBackend([sse_frame(completion_event({"answer": 1}))], wait_for_dispatch=False, hold_open=True)
        with make_client(backend) as client:
            relay = client.app.state.relay
            client.portal.call(relay.start_session, "task-1", DiscardSink())
            self.assertTrue(wait_until(lambda: client.get("/health").json()["pendingTasks"] == 1))
            self.assertEqual(client.get("/health").json()["connections"], 1)

    def test_cors_headers(self):
        with make_client(FakeBackend()) as client:
            response = client.get("/health", headers={"Origin": "http://example.com"})
        self.assertEqual(response.headers["access-control-allow-origin"], "*")


class TestLifespan(unittest.TestCase):
    def test_shutdown_logs_connection_and_webhook_statistics(self):
        backend = FakeBackend([sse_frame(completion_event({"answer": 42}))])
        with self.assertLogs("relay_api.api", level="INFO") as logs:
            with make_client(backend, webhook_url=WEBHOOK_URL) as client:
                client.post("/api/perform", json={"message": "find docs"})
        stopping = [line for line in logs.output if "Relay gateway stopping" in line]
        self.assertEqual(len(stopping), 1)
        self.assertIn("'total_connections_ever': 1", stopping[0])
        self.assertIn("1 delivered, 0 failed", stopping[0])
