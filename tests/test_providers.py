"""Tests for LLM provider backends."""

import json
from datetime import datetime, timezone
from typing import List

import httpx
import pytest

from mcpchat.core.conversation import Message
from mcpchat.providers.base import (
    GroqProvider,
    HuggingFaceProvider,
    OllamaProvider,
    OpenAIProvider,
    OpenRouterProvider,
    ProviderError,
    ProviderFactory,
    with_request_metadata,
)
from mcpchat.validation.config import Config


def completion(content: str = "Hello!", total_tokens: int = 12) -> dict:
    return {
        "id": "cmpl-1",
        "model": "served-model",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 8, "completion_tokens": 4, "total_tokens": total_tokens},
    }


class Recorder:
    def __init__(self, status: int = 200, body=None):
        self.status = status
        self.body = completion() if body is None else body
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, str):
            return httpx.Response(self.status, text=self.body)
        return httpx.Response(self.status, json=self.body)

    @property
    def payload(self) -> dict:
        return json.loads(self.requests[-1].content)


def _config(**agent) -> Config:
    return Config(
        global_config={"agent": agent} if agent else None,
        environ={
            "OPENAI_API_KEY": "sk-test",
            "OPENROUTER_API_KEY": "or-test",
            "HF_API_KEY": "hf-test",
            "GROQ_API_KEY": "gsk-test",
        },
    )


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
async def http_client(recorder):
    async with httpx.AsyncClient(transport=httpx.MockTransport(recorder)) as client:
        yield client


class TestOpenAICompatible:
    async def test_request_shape(self, recorder, http_client):
        provider = OpenAIProvider("gpt-4o-mini", _config(), http_client=http_client)

        response = await provider.send_message([Message.user("hi")], system_prompt="Be brief.", temperature=0.3)

        request = recorder.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = recorder.payload
        assert payload["model"] == "gpt-4o-mini"
        assert payload["temperature"] == 0.3
        assert payload["messages"][1] == {"role": "user", "content": "hi"}

        system = payload["messages"][0]
        assert system["role"] == "system"
        assert system["content"].startswith("=== REQUEST METADATA ===\nCURRENT_UTC_TIME: ")
        assert system["content"].endswith("Be brief.")

        assert response.content == "Hello!"
        assert response.token_usage == 12
        assert response.provider == "openai"
        assert response.metadata["usage"]["prompt_tokens"] == 8

    async def test_empty_system_prompt_sends_none(self, recorder, http_client):
        provider = OpenAIProvider("gpt-4o-mini", _config(), http_client=http_client)

        await provider.send_message([Message.user("hi")], system_prompt="")

        assert [m["role"] for m in recorder.payload["messages"]] == ["user"]

    async def test_configured_defaults(self, recorder, http_client):
        config = _config(system_prompt="You are helpful.", temperature=0.6)
        provider = OpenAIProvider("gpt-4o-mini", config, http_client=http_client)

        await provider.send_message([Message.user("hi")])

        payload = recorder.payload
        assert payload["temperature"] == 0.6
        assert payload["messages"][0]["content"].endswith("You are helpful.")

    async def test_upstream_error_message(self, http_client, recorder):
        recorder.status = 429
        recorder.body = {"error": {"message": "Rate limit exceeded", "code": 429}}
        provider = OpenRouterProvider("mistralai/mistral-7b-instruct:free", _config(), http_client=http_client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.send_message([Message.user("hi")])

        assert str(exc_info.value) == "openrouter API error: Rate limit exceeded"

    async def test_non_json_error_body(self, http_client, recorder):
        recorder.status = 502
        recorder.body = "Bad Gateway"
        provider = GroqProvider("llama-3.1-8b-instant", _config(), http_client=http_client)

        with pytest.raises(ProviderError) as exc_info:
            await provider.send_message([Message.user("hi")])

        assert "Bad Gateway" in str(exc_info.value)

    async def test_empty_choices(self, http_client, recorder):
        recorder.body = {"choices": []}
        provider = OpenAIProvider("gpt-4o", _config(), http_client=http_client)

        with pytest.raises(ProviderError, match="Empty response from API"):
            await provider.send_message([Message.user("hi")])

    async def test_missing_api_key(self, http_client, recorder):
        provider = OpenAIProvider("gpt-4o", Config(environ={}), http_client=http_client)

        with pytest.raises(ProviderError, match="API key not configured"):
            await provider.send_message([Message.user("hi")])
        assert recorder.requests == []

    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OpenAIProvider("gpt-4o", _config(), http_client=client)
            with pytest.raises(ProviderError, match="connection refused"):
                await provider.send_message([Message.user("hi")])

    async def test_api_base_override(self, http_client, recorder):
        config = Config(
            global_config={"providers": {"openai": {"api_base": "http://proxy.test/v1/"}}},
            environ={"OPENAI_API_KEY": "k"},
        )
        provider = OpenAIProvider("gpt-4o", config, http_client=http_client)

        await provider.send_message([Message.user("hi")])

        assert str(recorder.requests[0].url) == "http://proxy.test/v1/chat/completions"

    async def test_openrouter_title_header(self, http_client, recorder):
        provider = OpenRouterProvider("mistralai/mistral-7b-instruct:free", _config(), http_client=http_client)

        await provider.send_message([Message.user("hi")])

        assert recorder.requests[0].headers["X-Title"] == "MCPChat"


class TestHuggingFace:
    async def test_default_inference_provider_suffix(self, http_client, recorder):
        provider = HuggingFaceProvider("meta-llama/Llama-3.1-8B-Instruct", _config(), http_client=http_client)

        await provider.send_message([Message.user("hi")])

        assert str(recorder.requests[0].url) == "https://router.huggingface.co/v1/chat/completions"
        assert recorder.payload["model"] == "meta-llama/Llama-3.1-8B-Instruct:featherless-ai"

    def test_mapped_and_explicit_routing(self):
        mapped = HuggingFaceProvider("deepseek-ai/DeepSeek-V3.2", _config())
        explicit = HuggingFaceProvider("org/model:together", _config())

        assert mapped._model_id() == "deepseek-ai/DeepSeek-V3.2:novita"
        assert explicit._model_id() == "org/model:together"


class TestOllama:
    async def test_chat_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "model": "llama3",
                "message": {"role": "assistant", "content": "local reply"},
                "eval_count": 7,
            })

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = OllamaProvider("llama3", Config(environ={}), http_client=client)
            response = await provider.send_message([Message.user("hi")], system_prompt="", temperature=0.1)

        assert str(requests[0].url) == "http://localhost:11434/api/chat"
        payload = json.loads(requests[0].content)
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0.1}
        assert response.content == "local reply"
        assert response.token_usage == 7


class TestFactory:
    @pytest.mark.parametrize("model,expected", [
        ("openai/gpt-4o", ("openai", "gpt-4o")),
        ("openrouter/mistralai/mistral-7b-instruct:free", ("openrouter", "mistralai/mistral-7b-instruct:free")),
        ("huggingface/deepseek-ai/DeepSeek-V3.2", ("huggingface", "deepseek-ai/DeepSeek-V3.2")),
        ("mistralai/mistral-7b-instruct", ("openrouter", "mistralai/mistral-7b-instruct")),
        ("gpt-4o", ("openai", "gpt-4o")),
        ("llama-3.1-8b-instant", ("groq", "llama-3.1-8b-instant")),
        ("qwen2.5-72b", ("together", "qwen2.5-72b")),
    ])
    def test_split_model(self, model, expected):
        assert ProviderFactory.split_model(model) == expected

    def test_create(self):
        provider = ProviderFactory.create("groq/llama-3.1-8b-instant", _config())

        assert isinstance(provider, GroqProvider)
        assert provider.model == "llama-3.1-8b-instant"

    def test_available_providers(self):
        assert set(ProviderFactory.available_providers()) >= {
            "openai", "openrouter", "huggingface", "together", "groq", "ollama",
        }


def test_request_metadata_header():
    stamp = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    prompt = with_request_metadata("Be brief.", now=stamp)

    assert prompt.startswith("=== REQUEST METADATA ===\nCURRENT_UTC_TIME: 2025-01-02T03:04:05+00:00\n")
    assert prompt.endswith("========================\n\nBe brief.")

