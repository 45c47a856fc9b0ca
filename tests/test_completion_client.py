from __future__ import annotations

import json
import unittest
from unittest.mock import patch

import httpx

from ha_dashboard.core import settings
from ha_dashboard.core.errors import UpstreamError
from ha_dashboard.services.completion_client import CompletionClient, parse_completion


class TestParseCompletion(unittest.TestCase):
    def test_text_and_tool_use_blocks(self) -> None:
        result = parse_completion(
            {
                "stop_reason": "tool_use",
                "content": [
                    {"type": "text", "text": "Turning on the kitchen light."},
                    {
                        "type": "tool_use",
                        "id": "toolu_01",
                        "name": "call_service",
                        "input": {"domain": "light", "service": "turn_on", "entity_id": "light.kitchen"},
                    },
                ],
                "usage": {"input_tokens": 100, "output_tokens": 20},
            }
        )

        self.assertTrue(result.wants_tools)
        self.assertEqual("Turning on the kitchen light.", result.text)
        self.assertEqual("toolu_01", result.tool_invocations[0].invocation_id)
        self.assertEqual("call_service", result.tool_invocations[0].tool_name)
        self.assertEqual("light.kitchen", result.tool_invocations[0].arguments["entity_id"])
        self.assertEqual(2, len(result.content))
        self.assertEqual(100, result.usage["input_tokens"])

    def test_missing_tool_id_gets_positional_id(self) -> None:
        result = parse_completion(
            {"stop_reason": "tool_use", "content": [{"type": "tool_use", "name": "call_service", "input": None}]}
        )
        self.assertEqual("tool_use_0", result.tool_invocations[0].invocation_id)
        self.assertEqual({}, result.tool_invocations[0].arguments)

    def test_end_turn_with_stray_content(self) -> None:
        result = parse_completion({"stop_reason": "end_turn", "content": ["junk", {"type": "text", "text": ""}]})
        self.assertFalse(result.wants_tools)
        self.assertEqual("", result.text)


class TestCompletionClient(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []
        self.response = httpx.Response(
            200,
            json={"stop_reason": "end_turn", "content": [{"type": "text", "text": "Hello"}]},
        )
        self.error: Exception | None = None

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if self.error is not None:
                raise self.error
            return self.response

        patchers = [
            patch.object(settings, "ANTHROPIC_API_KEY", "sk-test"),
            patch(
                "ha_dashboard.services.completion_client._completion_client",
                new=lambda timeout: httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout),
            ),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)

        self.client = CompletionClient(base_url="https://llm.test/", model="test-model", timeout_sec=5)

    async def test_request_body_and_headers(self) -> None:
        tools = [{"name": "call_service", "description": "x", "input_schema": {"type": "object"}}]
        result = await self.client.complete(
            "system text",
            [{"role": "user", "content": "hi"}],
            max_tokens=4096,
            tools=tools,
        )

        self.assertEqual("Hello", result.text)
        request = self.requests[0]
        self.assertEqual("https://llm.test/v1/messages", str(request.url))
        self.assertEqual("sk-test", request.headers["x-api-key"])
        self.assertEqual(settings.ANTHROPIC_VERSION, request.headers["anthropic-version"])
        body = json.loads(request.content)
        self.assertEqual("test-model", body["model"])
        self.assertEqual(4096, body["max_tokens"])
        self.assertEqual("system text", body["system"])
        self.assertEqual([{"role": "user", "content": "hi"}], body["messages"])
        self.assertEqual(tools, body["tools"])

    async def test_tools_omitted_when_absent(self) -> None:
        await self.client.complete("system", [{"role": "user", "content": "hi"}], max_tokens=1024)
        self.assertNotIn("tools", json.loads(self.requests[0].content))

    async def test_error_status_raises_upstream_error(self) -> None:
        self.response = httpx.Response(529, text='{"type":"error","error":{"type":"overloaded_error"}}')
        with self.assertRaises(UpstreamError) as ex:
            await self.client.complete("system", [{"role": "user", "content": "hi"}], max_tokens=1024)

        self.assertEqual(529, ex.exception.status)
        detail = ex.exception.to_error_detail()
        self.assertEqual("Failed to get response", detail["error"])
        self.assertIn("Completion API error 529", detail["details"])
        self.assertIn("overloaded_error", detail["details"])

    async def test_transport_error_raises_upstream_error(self) -> None:
        self.error = httpx.ConnectError("name resolution failed")
        with self.assertRaises(UpstreamError) as ex:
            await self.client.complete("system", [{"role": "user", "content": "hi"}], max_tokens=1024)
        self.assertEqual(0, ex.exception.status)
        self.assertIn("name resolution failed", ex.exception.details)

    async def test_non_json_body_raises_upstream_error(self) -> None:
        self.response = httpx.Response(200, text="<html>proxy</html>")
        with self.assertRaises(UpstreamError):
            await self.client.complete("system", [{"role": "user", "content": "hi"}], max_tokens=1024)


if __name__ == "__main__":
    unittest.main()
