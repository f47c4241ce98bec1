"""
Unittest suite for the HTTP surface.

The chat service dependency is overridden with one wired to in-memory
stores and a stub gateway; lifespan events are not run.
"""

import os
import tempfile
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from roomy.api import GENERIC_ERROR, app
from roomy.api_enhancements import RateLimiter
from roomy.chat_service import NO_MEMORY_REPLY, get_chat_service, reset_chat_service
from roomy.config import reload_config
from roomy.errors import UpstreamError
from roomy.openai_config import PAYMENT_REQUIRED_MESSAGE
from roomy.session_store import close_database

from tests.support import REPLY, StubGateway, make_service, seed_dorms


class ApiTestCase(unittest.TestCase):

    def setUp(self) -> None:
        self.gateway = StubGateway()
        self.service = make_service(self.gateway)
        seed_dorms(self.service)
        app.dependency_overrides[get_chat_service] = lambda: self.service
        self.addCleanup(app.dependency_overrides.clear)
        self.client = TestClient(app)


class TestChatEndpoint(ApiTestCase):

    def test_successful_turn(self) -> None:
        response = self.client.post(
            "/api/roomy-chat",
            json={"message": "I want dorms under $450 near AUB with wifi", "userId": "u1", "sessionId": "s1"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["response"], REPLY)
        self.assertEqual(body["sessionId"], "s1")
        self.assertTrue(body["hasContext"])
        self.assertEqual(body["filters"], {"budget": 450, "university": "AUB", "amenity": "wifi"})
        self.assertIn("followups", body)
        self.assertIn("X-Request-ID", response.headers)
        self.assertIn("X-Response-Time-Ms", response.headers)

    def test_command_response_shape(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": "reset chat", "sessionId": "s1"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["sessionReset"])
        self.assertNotIn("memoryReset", response.json())

    def test_empty_message_is_400(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": "   "})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "Message cannot be empty"})

    def test_malformed_body_is_400(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": ["not", "text"]})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid input")

    def test_rate_limited_is_429(self) -> None:
        self.service.rate_limiter = RateLimiter(requests_per_minute=1, clock=lambda: 1000.0)
        first = self.client.post("/api/roomy-chat", json={"message": "hi"})
        self.assertEqual(first.status_code, 200)
        second = self.client.post("/api/roomy-chat", json={"message": "hi"})
        self.assertEqual(second.status_code, 429)
        self.assertIn("Too many requests", second.json()["error"])
        self.assertEqual(second.headers["Retry-After"], "61")

    def test_gateway_payment_required_passes_through(self) -> None:
        self.gateway.error = UpstreamError(PAYMENT_REQUIRED_MESSAGE, status_code=402)
        response = self.client.post("/api/roomy-chat", json={"message": "dorms near AUB"})
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json(), {"error": PAYMENT_REQUIRED_MESSAGE})

    def test_unexpected_error_is_generic_500(self) -> None:
        self.gateway.error = RuntimeError("database password is hunter2")
        response = self.client.post("/api/roomy-chat", json={"message": "dorms near AUB"})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": GENERIC_ERROR})

        recent = self.client.get("/api/errors/recent").json()
        self.assertEqual(recent["recent_errors"][-1]["type"], "RuntimeError")
        self.assertEqual(recent["recent_errors"][-1]["source"], "roomy-chat")


class TestUnreachableDatabase(unittest.TestCase):
    """The real chat service dependency, with DUCKDB_PATH pointing at a directory"""

    def setUp(self) -> None:
        workdir = tempfile.TemporaryDirectory()
        self.addCleanup(workdir.cleanup)
        self.addCleanup(reload_config)
        self.addCleanup(reset_chat_service)
        self.addCleanup(close_database)
        patcher = mock.patch.dict(os.environ, {"DUCKDB_PATH": workdir.name, "ROOMY_ENV": "local"})
        patcher.start()
        self.addCleanup(patcher.stop)

        close_database()
        reset_chat_service()
        reload_config()
        service = get_chat_service()
        service.gateway = StubGateway()
        service.rate_limiter = RateLimiter(requests_per_minute=60)
        app.dependency_overrides.clear()
        self.client = TestClient(app)

    def test_chat_turn_answers_without_context(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": "dorms near AUB", "userId": "u1"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["response"], REPLY)
        self.assertFalse(body["hasContext"])
        self.assertEqual(body["filters"], {"university": "AUB"})

    def test_reset_chat_is_acknowledged(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": "reset chat", "sessionId": "s1"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["sessionReset"])

    def test_reset_memory_is_acknowledged(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": "reset my memory", "userId": "u1"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["memoryReset"])

    def test_recall_has_nothing_to_show(self) -> None:
        response = self.client.post("/api/roomy-chat", json={"message": "what do you remember", "userId": "u1"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["response"], NO_MEMORY_REPLY)


class TestRankingEndpoints(ApiTestCase):

    def test_roommates(self) -> None:
        response = self.client.post("/api/matches/roommates", json={
            "requester": {"budget": 500, "university": "AUB", "roomType": "Single"},
            "candidates": [
                {"id": "far", "budget": 1400, "university": "LAU"},
                {"id": "close", "budget": 520, "university": "AUB", "roomType": "Single"},
            ],
        })
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["variant"], "roommate")
        self.assertEqual([r["candidate"]["id"] for r in body["results"]], ["close", "far"])
        self.assertEqual(body["results"][0]["score"], 50)
        self.assertEqual(
            body["results"][0]["reasons"],
            ["Very similar budget", "Both prefer Single", "Same university: AUB"],
        )

    def test_roommate_filters(self) -> None:
        response = self.client.post("/api/matches/roommates", json={
            "requester": {"budget": 500},
            "candidates": [{"id": "a", "budget": 450}, {"id": "b"}, {"id": "c", "budget": 900}],
            "filters": {"budget_min": 400, "budget_max": 600, "university": "All Universities"},
        })
        self.assertEqual([r["candidate"]["id"] for r in response.json()["results"]], ["a"])

    def test_dorms(self) -> None:
        response = self.client.post("/api/matches/dorms", json={
            "requester": {"budget": 500, "university": "AUB"},
            "candidates": [
                {"id": "d1", "dorm_name": "Cedar House", "monthly_price": 480, "university": "AUB"},
                {"id": "d2", "dorm_name": "Far Away", "monthly_price": 900},
            ],
            "limit": 1,
        })
        body = response.json()
        self.assertEqual(body["variant"], "dorm")
        self.assertEqual(body["returned"], 1)
        self.assertEqual(body["results"][0]["candidate"]["full_name"], "Cedar House")

    def test_invalid_limit_is_400(self) -> None:
        response = self.client.post("/api/matches/dorms", json={"limit": 0})
        self.assertEqual(response.status_code, 400)

    def test_health(self) -> None:
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")


if __name__ == "__main__":
    unittest.main()
