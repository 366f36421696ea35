import asyncio
import json
import unittest

import httpx

from fakes import byte_chunks, collect, make_request, mock_client
from llm_relay.errors import ProviderError
from llm_relay.providers.anthropic import AnthropicProvider
from llm_relay.types import ChatRequest, Message


def _sse(*events: dict) -> bytes:
    lines = []
    for event in events:
        lines.append(f"event: {event['type']}\ndata: {json.dumps(event)}\n\n")
    return "".join(lines).encode()


class AnthropicProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []

    def _provider(self, handler) -> AnthropicProvider:
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        return AnthropicProvider(api_key="ak-test", client=mock_client(recording))

    def test_system_content_is_merged_into_top_level_field(self) -> None:
        reply = {
            "model": "claude-3-haiku-20240307",
            "content": [{"type": "text", "text": "Sure"}, {"type": "text", "text": " thing"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 12, "output_tokens": 3},
        }
        provider = self._provider(lambda request: httpx.Response(200, json=reply))
        req = ChatRequest(
            messages=[
                Message(role="system", content="You review code."),
                Message(role="user", content="Look at this"),
                Message(role="system", content="Answer in English."),
                Message(role="assistant", content="Okay"),
            ],
            system_prompt="You are helpful.",
        )

        response = asyncio.run(provider.send_message(req))

        sent = self.requests[0]
        self.assertEqual(sent.url.path, "/v1/messages")
        self.assertEqual(sent.headers["x-api-key"], "ak-test")
        self.assertEqual(sent.headers["anthropic-version"], "2023-06-01")
        payload = json.loads(sent.content)
        self.assertEqual(payload["system"], "You are helpful.\n\nYou review code.\n\nAnswer in English.")
        self.assertEqual(
            payload["messages"],
            [{"role": "user", "content": "Look at this"}, {"role": "assistant", "content": "Okay"}],
        )
        self.assertEqual(payload["max_tokens"], 4096)
        self.assertEqual(payload["model"], "claude-3-opus-20240229")

        self.assertEqual(response.content, "Sure thing")
        self.assertEqual(response.finish_reason, "stop")
        self.assertEqual(response.usage.total_tokens, 15)

    def test_system_field_omitted_without_system_content(self) -> None:
        reply = {"content": [], "stop_reason": "max_tokens"}
        provider = self._provider(lambda request: httpx.Response(200, json=reply))

        response = asyncio.run(provider.send_message(make_request(max_tokens=10)))

        payload = json.loads(self.requests[0].content)
        self.assertNotIn("system", payload)
        self.assertEqual(payload["max_tokens"], 10)
        self.assertEqual(response.finish_reason, "length")
        self.assertEqual(response.model, "claude-3-opus-20240229")

    def test_probe_accepts_400(self) -> None:
        provider = self._provider(lambda request: httpx.Response(400, json={"error": {"message": "bad"}}))

        status = asyncio.run(provider.get_status())

        self.assertTrue(status.available)
        self.assertEqual(json.loads(self.requests[0].content)["max_tokens"], 1)

    def test_probe_rejects_bad_key(self) -> None:
        provider = self._provider(lambda request: httpx.Response(401))

        status = asyncio.run(provider.get_status())

        self.assertFalse(status.available)
        self.assertIn("Authentication failed", status.error)

    def test_stream_uses_typed_events(self) -> None:
        body = _sse(
            {"type": "message_start", "message": {"model": "claude-3-haiku-20240307", "usage": {"input_tokens": 10}}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}},
            {"type": "ping"},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " there"}},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 4}},
            {"type": "message_stop"},
        )
        cut = body.index(b"text_delta") + 4
        provider = self._provider(lambda request: httpx.Response(200, content=byte_chunks(body[:cut], body[cut:])))

        chunks = asyncio.run(collect(provider.stream_message(make_request(model="claude-3-haiku-20240307"))))

        self.assertEqual([c.delta for c in chunks], ["Hi", " there", ""])
        self.assertEqual(chunks[-1].content, "Hi there")
        self.assertTrue(chunks[-1].finished)
        self.assertEqual(chunks[0].model, "claude-3-haiku-20240307")

        stats = provider.get_usage_stats()
        self.assertEqual(stats.total_tokens, 14)
        self.assertAlmostEqual(stats.total_cost, 10 / 1000 * 0.00025 + 4 / 1000 * 0.00125)

    def test_stream_error_event_raises(self) -> None:
        body = _sse(
            {"type": "message_start", "message": {"model": "claude-3-opus-20240229", "usage": {}}},
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        )
        provider = self._provider(lambda request: httpx.Response(200, content=body))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(collect(provider.stream_message(make_request())))

        self.assertEqual(ctx.exception.code, "overloaded_error")
        self.assertEqual(provider.get_usage_stats().total_errors, 1)


if __name__ == "__main__":
    unittest.main()
