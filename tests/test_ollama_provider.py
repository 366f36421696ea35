import asyncio
import json
import unittest

import httpx

from fakes import byte_chunks, collect, make_request, mock_client
from llm_relay.errors import NetworkError, ProviderError
from llm_relay.providers.ollama import OllamaProvider

_TAGS = {"models": [{"name": "llama2:latest"}, {"name": "mistral"}, {"name": "phi3"}]}


def _ndjson(*objects: dict) -> bytes:
    return "".join(json.dumps(o) + "\n" for o in objects).encode()


class OllamaProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []

    def _provider(self, routes: dict) -> OllamaProvider:
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            route = routes[request.url.path]
            return route(request) if callable(route) else route

        return OllamaProvider(client=mock_client(handler))

    def test_send_message_reports_tokens_but_no_cost(self) -> None:
        reply = {
            "model": "mistral",
            "message": {"role": "assistant", "content": "Bonjour"},
            "done": True,
            "done_reason": "stop",
            "prompt_eval_count": 20,
            "eval_count": 5,
        }
        provider = self._provider({"/api/chat": httpx.Response(200, json=reply)})

        response = asyncio.run(provider.send_message(make_request(model="mistral", system_prompt="Be French.", max_tokens=32)))

        payload = json.loads(self.requests[0].content)
        self.assertEqual(payload["messages"][0], {"role": "system", "content": "Be French."})
        self.assertEqual(payload["options"], {"temperature": 0.7, "num_predict": 32})
        self.assertFalse(payload["stream"])
        self.assertNotIn("Authorization", self.requests[0].headers)

        self.assertEqual(response.content, "Bonjour")
        self.assertEqual(response.finish_reason, "stop")
        self.assertEqual(response.usage.total_tokens, 25)
        stats = provider.get_usage_stats()
        self.assertEqual(stats.total_tokens, 25)
        self.assertEqual(stats.total_cost, 0.0)

    def test_error_body_is_surfaced(self) -> None:
        provider = self._provider({"/api/chat": httpx.Response(404, json={"error": "model 'nope' not found"})})

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send_message(make_request(model="nope")))

        self.assertEqual(ctx.exception.message, "model 'nope' not found")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_stream_ends_on_done_flag(self) -> None:
        body = _ndjson(
            {"model": "llama2", "message": {"content": "Hel"}, "done": False},
            {"model": "llama2", "message": {"content": "lo"}, "done": False},
        )
        body += b"{garbage\n"
        body += _ndjson(
            {"model": "llama2", "message": {"content": ""}, "done": True, "prompt_eval_count": 8, "eval_count": 2},
            {"model": "llama2", "message": {"content": "never seen"}, "done": False},
        )
        cut = body.index(b"Hel") + 2
        provider = self._provider({"/api/chat": lambda r: httpx.Response(200, content=byte_chunks(body[:cut], body[cut:]))})

        chunks = asyncio.run(collect(provider.stream_message(make_request())))

        self.assertEqual([c.delta for c in chunks], ["Hel", "lo", ""])
        self.assertEqual(chunks[-1].content, "Hello")
        self.assertTrue(chunks[-1].finished)
        self.assertEqual([c.finished for c in chunks].count(True), 1)
        stats = provider.get_usage_stats()
        self.assertEqual(stats.total_tokens, 10)
        self.assertEqual(stats.total_cost, 0.0)

    def test_refresh_models_replaces_catalog_and_keeps_known_metadata(self) -> None:
        reply = {"message": {"content": "x"}, "done": True, "eval_count": 3}
        provider = self._provider({"/api/tags": httpx.Response(200, json=_TAGS), "/api/chat": httpx.Response(200, json=reply)})

        async def scenario() -> None:
            await provider.send_message(make_request())
            await provider.refresh_models()

        asyncio.run(scenario())

        models = {m.id: m for m in provider.models}
        self.assertEqual(list(models), ["llama2:latest", "mistral", "phi3"])
        self.assertEqual(models["llama2:latest"].name, "Llama 2")
        self.assertEqual(models["mistral"].context_window, 8192)
        self.assertEqual(models["phi3"].name, "phi3")
        self.assertEqual(models["phi3"].context_window, 4096)
        self.assertEqual(models["phi3"].max_tokens, 2048)
        # usage survives a catalog swap
        self.assertEqual(provider.get_usage_stats().total_tokens, 3)

    def test_probe_refreshes_catalog(self) -> None:
        provider = self._provider({"/api/tags": httpx.Response(200, json=_TAGS)})

        self.assertTrue(asyncio.run(provider.is_available()))
        self.assertEqual(provider.default_model.id, "llama2:latest")

    def test_list_installed_models(self) -> None:
        provider = self._provider({"/api/tags": httpx.Response(200, json=_TAGS)})
        self.assertEqual(asyncio.run(provider.list_installed_models()), ["llama2:latest", "mistral", "phi3"])

    def test_validate_config_needs_no_api_key(self) -> None:
        provider = self._provider({"/api/tags": httpx.Response(200, json={"models": []})})
        self.assertTrue(asyncio.run(provider.validate_config()))

    def test_unreachable_host_is_network_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = self._provider({"/api/tags": refuse})

        with self.assertRaises(NetworkError):
            asyncio.run(provider.refresh_models())
        self.assertFalse(asyncio.run(provider.get_status()).available)

    def test_list_installed_models_is_empty_when_host_fails(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        for route in (refuse, httpx.Response(500, json={"error": "boom"})):
            provider = self._provider({"/api/tags": route})
            with self.assertLogs("llm_relay.providers.ollama", level="WARNING"):
                self.assertEqual(asyncio.run(provider.list_installed_models()), [])

    def test_pull_model_streams_progress_then_refreshes(self) -> None:
        body = _ndjson(
            {"status": "pulling manifest"},
            {"status": "downloading", "digest": "sha256:abc", "total": 100, "completed": 40},
            {"status": "downloading", "digest": "sha256:abc", "total": 100, "completed": 100},
            {"status": "success"},
        )
        provider = self._provider(
            {
                "/api/pull": lambda r: httpx.Response(200, content=body),
                "/api/tags": httpx.Response(200, json={"models": [{"name": "phi3"}]}),
            }
        )

        async def scenario() -> list:
            return [p async for p in provider.pull_model("phi3")]

        progress = asyncio.run(scenario())

        self.assertEqual([p.status for p in progress], ["pulling manifest", "downloading", "downloading", "success"])
        self.assertEqual(progress[1].completed, 40)
        self.assertTrue(progress[-1].done)
        self.assertEqual(json.loads(self.requests[0].content), {"model": "phi3", "stream": True})
        self.assertEqual([m.id for m in provider.models], ["phi3"])

    def test_pull_model_error_event(self) -> None:
        body = _ndjson({"status": "pulling manifest"}, {"error": "pull model manifest: file does not exist"})
        provider = self._provider({"/api/pull": lambda r: httpx.Response(200, content=body)})

        async def scenario() -> None:
            async for _ in provider.pull_model("missing"):
                pass

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(scenario())
        self.assertEqual(ctx.exception.code, "PULL_FAILED")


if __name__ == "__main__":
    unittest.main()
