import types

import pytest

from spawnsmith.model_client import create_model_client
from spawnsmith.provider_routing import provider_router
from spawnsmith.provider_runtime import (
    MockClient,
    MockRuntime,
    ProviderRuntimeContext,
    ProviderRuntimeError,
    provider_registry,
)


def test_model_ids_route_by_prefix():
    assert provider_router.parse_model_id("openrouter/meta-llama/llama-3.3-70b-instruct") == (
        "openrouter",
        "meta-llama/llama-3.3-70b-instruct",
    )
    assert provider_router.parse_model_id("gpt-4o-mini") == ("openai", "gpt-4o-mini")
    assert provider_router.parse_model_id("unknown/model") == ("openai", "unknown/model")
    descriptor, model = provider_router.get_runtime_descriptor("mock/scripted")
    assert (descriptor.runtime_id, model) == ("mock_chat", "scripted")


def test_openrouter_client_uses_base_url_and_headers(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    captured = {}

    class FakeOpenAI:
        def __init__(self, **kwargs):
            captured.update(kwargs)

    monkeypatch.setattr("spawnsmith.provider_runtime.OpenAI", FakeOpenAI)
    client = create_model_client({"providers": {"default_model": "openrouter/openai/gpt-4o-mini"}})
    assert client.model == "openai/gpt-4o-mini"
    assert captured["api_key"] == "test-key"
    assert captured["base_url"] == "https://openrouter.ai/api/v1"
    assert captured["default_headers"]["X-Title"] == "spawnsmith"


def test_missing_api_key_is_a_provider_error(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ProviderRuntimeError, match="OPENAI_API_KEY"):
        create_model_client({"providers": {"default_model": "openai/gpt-4o-mini"}})


def _openai_runtime():
    descriptor, _ = provider_router.get_runtime_descriptor("openai/gpt-4o-mini")
    return provider_registry.create_runtime(descriptor)


def test_chat_response_is_normalized():
    seen = {}

    def create(**kwargs):
        seen.update(kwargs)
        call = types.SimpleNamespace(
            id="call_1",
            type="function",
            function=types.SimpleNamespace(name="write_file", arguments='{"path": "a", "content": "b"}'),
        )
        message = types.SimpleNamespace(role="assistant", content=None, tool_calls=[call])
        choice = types.SimpleNamespace(message=message, finish_reason="tool_calls", error=None)
        usage = types.SimpleNamespace(model_dump=lambda: {"total_tokens": 12})
        return types.SimpleNamespace(choices=[choice], usage=usage, model="gpt-4o-mini")

    client = types.SimpleNamespace(chat=types.SimpleNamespace(completions=types.SimpleNamespace(create=create)))
    tools = [{"type": "function", "function": {"name": "write_file", "parameters": {}}}]
    result = _openai_runtime().invoke(
        client=client,
        model="gpt-4o-mini",
        messages=[{"role": "user", "content": "hi"}],
        tools=tools,
        tool_choice="required",
        max_tokens=256,
        context=ProviderRuntimeContext(),
    )
    assert seen["tool_choice"] == "required"
    assert seen["max_tokens"] == 256
    assert result.finish_reason == "tool_calls"
    assert result.usage == {"total_tokens": 12}
    [call] = result.tool_calls
    assert (call.id, call.name) == ("call_1", "write_file")
    assert call.parsed_arguments() == {"path": "a", "content": "b"}


def test_chat_errors_become_provider_errors():
    def create(**kwargs):
        raise ConnectionError("connection reset")

    client = types.SimpleNamespace(chat=types.SimpleNamespace(completions=types.SimpleNamespace(create=create)))
    with pytest.raises(ProviderRuntimeError, match="connection reset"):
        _openai_runtime().invoke(
            client=client,
            model="gpt-4o-mini",
            messages=[],
            tools=None,
            tool_choice=None,
            max_tokens=None,
            context=ProviderRuntimeContext(),
        )


def test_mock_script_is_replayed_then_exhausted():
    runtime = MockRuntime(provider_router.providers["mock"])
    client = MockClient(["hello", {"name": "done", "arguments": {"summary": "ok"}}])
    kwargs = dict(model="scripted", messages=[], tools=None, tool_choice=None, max_tokens=None,
                  context=ProviderRuntimeContext())
    assert runtime.invoke(client=client, **kwargs).text == "hello"
    second = runtime.invoke(client=client, **kwargs)
    assert second.tool_calls[0].name == "done"
    assert second.finish_reason == "tool_calls"
    with pytest.raises(ProviderRuntimeError, match="exhausted"):
        runtime.invoke(client=client, **kwargs)
    assert len(client.requests) == 3
