"""LLM 客户端测试：通过 MockTransport 模拟 OpenAI 兼容接口"""

import json

import httpx
import pytest

from dashboard_service.errors import LLMError
from dashboard_service.services.llm_client import LLMClient


def _completion(content):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1_700_000_000,
        "model": "test-model",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": "stop",
        }],
    }


def _client(handler) -> LLMClient:
    return LLMClient(
        api_key="sk-test",
        base_url="https://llm.test/v1",
        model="test-model",
        timeout=5,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestLLMClient:
    async def test_json_mode_request(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=_completion('{"recommendation": "hold"}'))

        content = await _client(handler).complete_json("system", "user")
        assert content == '{"recommendation": "hold"}'
        assert captured["path"] == "/v1/chat/completions"
        assert captured["body"]["model"] == "test-model"
        assert captured["body"]["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in captured["body"]["messages"]] == ["system", "user"]

    async def test_http_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": {"message": "upstream"}})

        with pytest.raises(LLMError):
            await _client(handler).complete_json("system", "user")
        assert len(calls) == 1

    async def test_empty_content(self):
        def handler(request):
            return httpx.Response(200, json=_completion("   "))

        with pytest.raises(LLMError):
            await _client(handler).complete_json("system", "user")

    async def test_missing_api_key(self):
        with pytest.raises(LLMError):
            await LLMClient(api_key="").complete_json("system", "user")
