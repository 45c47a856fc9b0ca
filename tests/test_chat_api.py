from __future__ import annotations

import json
import unittest
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient

from ha_dashboard.core import settings
from ha_dashboard.core.errors import ToolLoopExceeded, UpstreamError
from ha_dashboard.main import app
from ha_dashboard.models.schemas import CompletionResult


HOME_DATA = {
    "entities": {"light": [{"id": "light.kitchen", "displayName": "Kitchen", "state": "on"}]},
    "summary": {"lightsOn": 1, "totalLights": 1},
}


class ScriptedCompletion:
    """Stands in for CompletionClient; every instance replays the class-level script."""

    reply: CompletionResult | None = None
    error: Exception | None = None
    prompts: list[str] = []

    async def complete(self, system_prompt, messages, *, max_tokens, tools=None, trace_id=None) -> CompletionResult:
        type(self).prompts.append(system_prompt)
        if type(self).error is not None:
            raise type(self).error
        return type(self).reply


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(app)
        self.configure(HA_BASE_URL="http://ha.test", HA_TOKEN="test-token", ANTHROPIC_API_KEY="sk-test")

    def configure(self, **values) -> None:
        for name, value in values.items():
            patcher = patch.object(settings, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)


class TestChatApi(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        ScriptedCompletion.reply = CompletionResult(stop_reason="end_turn", text_segments=["The kitchen light is on."])
        ScriptedCompletion.error = None
        ScriptedCompletion.prompts = []
        patcher = patch("ha_dashboard.services.session_service.CompletionClient", new=ScriptedCompletion)
        patcher.start()
        self.addCleanup(patcher.stop)

    def post_chat(self, payload) -> httpx.Response:
        return self.client.post("/api/chat", json=payload)

    def test_get_is_rejected(self) -> None:
        response = self.client.get("/api/chat")
        self.assertEqual(405, response.status_code)
        self.assertEqual({"error": "Method not allowed"}, response.json())
        self.assertEqual("POST", response.headers["allow"])

    def test_invalid_json_is_rejected(self) -> None:
        response = self.client.post("/api/chat", content=b"{not json", headers={"Content-Type": "application/json"})
        self.assertEqual(400, response.status_code)
        self.assertEqual("Malformed request", response.json()["error"])

    def test_missing_messages_is_rejected(self) -> None:
        response = self.post_chat({"homeData": HOME_DATA})
        self.assertEqual(400, response.status_code)
        self.assertIn("messages", response.json()["details"])

    def test_last_message_must_come_from_user(self) -> None:
        response = self.post_chat(
            {
                "messages": [
                    {"role": "user", "content": "hi"},
                    {"role": "assistant", "content": "hello"},
                ]
            }
        )
        self.assertEqual(400, response.status_code)
        self.assertIn("last message", response.json()["details"])

    def test_missing_api_key_reports_flags(self) -> None:
        self.configure(ANTHROPIC_API_KEY="")
        response = self.post_chat({"messages": [{"role": "user", "content": "hi"}], "homeData": HOME_DATA})

        self.assertEqual(500, response.status_code)
        body = response.json()
        self.assertEqual("Anthropic API key not configured", body["error"])
        self.assertFalse(body["hasApiKey"])
        self.assertEqual([], ScriptedCompletion.prompts)

    def test_agent_mode_requires_home_assistant(self) -> None:
        self.configure(HA_TOKEN="")
        response = self.post_chat({"messages": [{"role": "user", "content": "hi"}], "homeData": HOME_DATA})

        self.assertEqual(500, response.status_code)
        self.assertEqual("Home Assistant not configured", response.json()["error"])
        self.assertFalse(response.json()["hasHaToken"])

    def test_chat_mode_without_home_assistant(self) -> None:
        self.configure(HA_BASE_URL="", HA_TOKEN="")
        response = self.post_chat({"messages": [{"role": "user", "content": "hi"}], "mode": "chat"})

        self.assertEqual(200, response.status_code)
        self.assertIn("No home data available.", ScriptedCompletion.prompts[0])

    def test_context_text_is_used_without_snapshot(self) -> None:
        self.configure(HA_BASE_URL="", HA_TOKEN="")
        response = self.post_chat(
            {"messages": [{"role": "user", "content": "hi"}], "mode": "chat", "context": "Lights: 3/5 on\n"}
        )

        self.assertEqual(200, response.status_code)
        self.assertIn("Current home context:\nLights: 3/5 on", ScriptedCompletion.prompts[0])
        self.assertNotIn("No home data available.", ScriptedCompletion.prompts[0])

    def test_home_data_takes_precedence_over_context_text(self) -> None:
        response = self.post_chat(
            {
                "messages": [{"role": "user", "content": "hi"}],
                "homeData": HOME_DATA,
                "context": "Lights: 3/5 on",
            }
        )

        self.assertEqual(200, response.status_code)
        self.assertIn("Lights on: 1/1", ScriptedCompletion.prompts[0])
        self.assertNotIn("Lights: 3/5 on", ScriptedCompletion.prompts[0])

    def test_blank_context_text_falls_back_to_sentinel(self) -> None:
        self.configure(HA_BASE_URL="", HA_TOKEN="")
        response = self.post_chat({"messages": [{"role": "user", "content": "hi"}], "mode": "chat", "context": "   "})

        self.assertEqual(200, response.status_code)
        self.assertIn("No home data available.", ScriptedCompletion.prompts[0])

    def test_success_returns_message(self) -> None:
        response = self.post_chat(
            {"messages": [{"role": "user", "content": "What lights are on?"}], "homeData": HOME_DATA}
        )

        self.assertEqual(200, response.status_code)
        self.assertEqual({"message": "The kitchen light is on."}, response.json())
        self.assertIn('light.kitchen: "Kitchen" = on', ScriptedCompletion.prompts[0])
        self.assertIn("Lights on: 1/1", ScriptedCompletion.prompts[0])

    def test_upstream_error_maps_to_502(self) -> None:
        ScriptedCompletion.error = UpstreamError(status=401, body="invalid x-api-key")
        response = self.post_chat({"messages": [{"role": "user", "content": "hi"}], "homeData": HOME_DATA})

        self.assertEqual(502, response.status_code)
        self.assertEqual("Failed to get response", response.json()["error"])
        self.assertIn("invalid x-api-key", response.json()["details"])

    def test_tool_loop_cap_maps_to_500(self) -> None:
        ScriptedCompletion.error = ToolLoopExceeded(5)
        response = self.post_chat({"messages": [{"role": "user", "content": "hi"}], "homeData": HOME_DATA})

        self.assertEqual(500, response.status_code)
        self.assertIn("5 tool rounds", response.json()["details"])


class TestSystemApi(ApiTestCase):
    def test_api_test_reports_flags(self) -> None:
        self.configure(ANTHROPIC_API_KEY="")
        response = self.client.get("/api/test")

        self.assertEqual(200, response.status_code)
        self.assertEqual(
            {"message": "API working", "hasHaUrl": True, "hasHaToken": True, "hasApiKey": False},
            response.json(),
        )

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual("ok", response.json()["status"])

    def test_config_view_masks_secrets(self) -> None:
        self.configure(ANTHROPIC_API_KEY="sk-ant-1234567890")
        body = self.client.get("/v1/config").json()

        self.assertTrue(body["anthropic_key_set"])
        self.assertEqual("sk-a...7890", body["anthropic_key_preview"])
        self.assertNotIn("sk-ant-1234567890", json.dumps(body))


class TestHaProxy(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(200, json=[{"entity_id": "light.kitchen", "state": "on"}])

        patcher = patch(
            "ha_dashboard.services.ha_service._ha_client",
            new=lambda timeout: httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_not_configured(self) -> None:
        self.configure(HA_BASE_URL="")
        response = self.client.get("/api/ha/states")

        self.assertEqual(500, response.status_code)
        body = response.json()
        self.assertEqual("Home Assistant not configured", body["error"])
        self.assertFalse(body["hasUrl"])
        self.assertTrue(body["hasToken"])
        self.assertEqual([], self.requests)

    def test_forwards_path_with_token(self) -> None:
        response = self.client.get("/api/ha/states")

        self.assertEqual(200, response.status_code)
        self.assertEqual("light.kitchen", response.json()[0]["entity_id"])
        self.assertEqual("http://ha.test/api/states", str(self.requests[0].url))
        self.assertEqual("Bearer test-token", self.requests[0].headers["Authorization"])

    def test_forwards_query_path(self) -> None:
        response = self.client.get("/api/ha", params={"path": "states"})

        self.assertEqual(200, response.status_code)
        self.assertEqual("/api/states", self.requests[0].url.path)

    def test_forwards_post_body(self) -> None:
        response = self.client.post("/api/ha/services/light/turn_on", json={"entity_id": "light.kitchen"})

        self.assertEqual(200, response.status_code)
        self.assertEqual("POST", self.requests[0].method)
        self.assertEqual({"entity_id": "light.kitchen"}, json.loads(self.requests[0].content))

    def test_rejects_parent_segments(self) -> None:
        response = self.client.get("/api/ha", params={"path": "../secrets"})

        self.assertEqual(400, response.status_code)
        self.assertEqual([], self.requests)


if __name__ == "__main__":
    unittest.main()
