"""Runtime abstractions and concrete runtimes for model providers."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type

from openai import OpenAI

from .provider_routing import ProviderDescriptor


# ---------------------------------------------------------------------------
# Normalised result objects shared by runtimes
# ---------------------------------------------------------------------------


@dataclass
class ProviderToolCall:
    """Normalized representation of a provider tool call."""

    id: Optional[str]
    name: Optional[str]
    arguments: str
    type: str = "function"
    raw: Any = None
    synthetic: bool = False

    def parsed_arguments(self) -> Dict[str, Any]:
        try:
            value = json.loads(self.arguments or "{}")
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


@dataclass
class ProviderMessage:
    """Normalized assistant message returned from a provider."""

    role: str
    content: Optional[str]
    tool_calls: List[ProviderToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    index: Optional[int] = None
    raw_message: Any = None


@dataclass
class ProviderResult:
    """Result object returned from a provider runtime invocation."""

    messages: List[ProviderMessage]
    raw_response: Any
    usage: Optional[Dict[str, Any]] = None
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "".join(m.content or "" for m in self.messages)

    @property
    def tool_calls(self) -> List[ProviderToolCall]:
        return [tc for m in self.messages for tc in m.tool_calls]

    @property
    def finish_reason(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.finish_reason:
                return message.finish_reason
        return None


@dataclass
class ProviderRuntimeContext:
    """Context object passed to provider runtimes."""

    agent_config: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


class ProviderRuntimeError(RuntimeError):
    """Raised when a provider runtime encounters a fatal error."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = details or {}


# ---------------------------------------------------------------------------
# Base runtime + registry
# ---------------------------------------------------------------------------


class ProviderRuntime:
    """Interface for provider runtimes."""

    def __init__(self, descriptor: ProviderDescriptor) -> None:
        self.descriptor = descriptor

    def create_client(
        self,
        api_key: Optional[str],
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        raise NotImplementedError

    def invoke(
        self,
        *,
        client: Any,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
        max_tokens: Optional[int],
        context: ProviderRuntimeContext,
    ) -> ProviderResult:
        raise NotImplementedError


class ProviderRuntimeRegistry:
    """Registry that maps runtime identifiers to implementation classes."""

    def __init__(self) -> None:
        self._runtime_classes: Dict[str, Type[ProviderRuntime]] = {}

    def register_runtime(self, runtime_id: str, runtime_cls: Type[ProviderRuntime]) -> None:
        if not issubclass(runtime_cls, ProviderRuntime):
            raise TypeError(f"Runtime {runtime_cls!r} must inherit ProviderRuntime")
        self._runtime_classes[runtime_id] = runtime_cls

    def get_runtime_class(self, runtime_id: str) -> Optional[Type[ProviderRuntime]]:
        return self._runtime_classes.get(runtime_id)

    def create_runtime(self, descriptor: ProviderDescriptor) -> ProviderRuntime:
        runtime_cls = self.get_runtime_class(descriptor.runtime_id)
        if runtime_cls is None:
            raise ProviderRuntimeError(
                f"Unknown provider runtime '{descriptor.runtime_id}' for provider '{descriptor.provider_id}'"
            )
        return runtime_cls(descriptor)


provider_registry = ProviderRuntimeRegistry()


# ---------------------------------------------------------------------------
# OpenAI chat runtime (Chat Completions)
# ---------------------------------------------------------------------------


class OpenAIChatRuntime(ProviderRuntime):
    """Runtime for OpenAI-compatible Chat Completions APIs."""

    def create_client(
        self,
        api_key: Optional[str],
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        if not api_key:
            raise ProviderRuntimeError(
                f"Missing API key for provider '{self.descriptor.provider_id}' (set {self.descriptor.api_key_env})"
            )
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        if default_headers:
            kwargs["default_headers"] = default_headers
        return OpenAI(**kwargs)

    # --- response parsing helpers ----------------------------------------
    def _get_attr(self, obj: Any, name: str, default: Any = None) -> Any:
        if hasattr(obj, name):
            return getattr(obj, name)
        if isinstance(obj, dict):
            return obj.get(name, default)
        return default

    def _message_content_to_text(self, content: Any) -> Optional[str]:
        if content is None:
            return None
        if isinstance(content, str):
            return content
        parts: List[str] = []
        for block in content:
            if self._get_attr(block, "type") in {"output_text", "text"}:
                text_val = self._get_attr(block, "text", "")
                if text_val:
                    parts.append(str(text_val))
        return "".join(parts) if parts else None

    def _extract_tool_calls(self, message: Any) -> List[ProviderToolCall]:
        results: List[ProviderToolCall] = []
        for raw in self._get_attr(message, "tool_calls") or []:
            fn = self._get_attr(raw, "function", {}) or {}
            arguments = self._get_attr(fn, "arguments", "{}")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            results.append(
                ProviderToolCall(
                    id=self._get_attr(raw, "id"),
                    name=self._get_attr(fn, "name"),
                    arguments=arguments,
                    type=self._get_attr(raw, "type", "function"),
                    raw=raw,
                )
            )
        return results

    def _extract_usage(self, response: Any) -> Optional[Dict[str, Any]]:
        usage_obj = getattr(response, "usage", None)
        if usage_obj is None:
            return None
        if hasattr(usage_obj, "model_dump"):
            return usage_obj.model_dump()
        try:
            return dict(usage_obj)
        except (TypeError, ValueError):
            return None

    def invoke(
        self,
        *,
        client: Any,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
        max_tokens: Optional[int],
        context: ProviderRuntimeContext,
    ) -> ProviderResult:
        request: Dict[str, Any] = {"model": model, "messages": messages}
        if tools:
            request["tools"] = [dict(tool) for tool in tools]
            if tool_choice:
                request["tool_choice"] = tool_choice
        if max_tokens:
            request["max_tokens"] = max_tokens

        try:
            response = client.chat.completions.create(**request)
        except Exception as exc:
            raise ProviderRuntimeError(str(exc), details={"model": model}) from exc

        normalized_messages: List[ProviderMessage] = []
        for idx, choice in enumerate(getattr(response, "choices", []) or []):
            error_obj = self._get_attr(choice, "error")
            if error_obj:
                msg = self._get_attr(error_obj, "message") or str(error_obj)
                raise ProviderRuntimeError(msg)
            message = self._get_attr(choice, "message", {})
            normalized_messages.append(
                ProviderMessage(
                    role=self._get_attr(message, "role", "assistant") or "assistant",
                    content=self._message_content_to_text(self._get_attr(message, "content")),
                    tool_calls=self._extract_tool_calls(message),
                    finish_reason=self._get_attr(choice, "finish_reason"),
                    index=idx,
                    raw_message=message,
                )
            )

        return ProviderResult(
            messages=normalized_messages,
            raw_response=response,
            usage=self._extract_usage(response),
            model=getattr(response, "model", None),
        )


provider_registry.register_runtime("openai_chat", OpenAIChatRuntime)
provider_registry.register_runtime("openrouter_chat", OpenAIChatRuntime)


# ---------------------------------------------------------------------------
# Mock runtime (offline validation + scripted tests)
# ---------------------------------------------------------------------------


class MockClient:
    """Client object for :class:`MockRuntime`.

    ``script`` entries are replayed in order, one per invocation:
      - ``ProviderResult``: returned as-is
      - ``str``: assistant text (may embed pseudo tool-call JSON)
      - ``dict`` with ``name``/``arguments``: one structured tool call
    Every request is recorded in ``requests``.
    """

    def __init__(self, script: Optional[List[Any]] = None) -> None:
        self.script: Optional[List[Any]] = list(script) if script is not None else None
        self.requests: List[Dict[str, Any]] = []


class MockRuntime(ProviderRuntime):
    """A simple mock provider runtime for offline runs.

    Without a script it behaves like a model that prints its tool calls as text:
      - no tools offered: answer the spec extraction prompt with a JSON spec
      - otherwise write package.json, then index.js, then call done
    """

    def create_client(
        self,
        api_key: Optional[str],
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return MockClient()

    def invoke(
        self,
        *,
        client: Any,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
        max_tokens: Optional[int],
        context: ProviderRuntimeContext,
    ) -> ProviderResult:
        client.requests.append(
            {"model": model, "messages": [dict(m) for m in messages], "tools": tools, "tool_choice": tool_choice}
        )
        if client.script is not None:
            if not client.script:
                raise ProviderRuntimeError("mock script exhausted")
            return self._scripted(client.script.pop(0))
        if not tools:
            return self._text_result(self._mock_spec(messages))
        return self._text_result(self._mock_build_step(messages))

    def _scripted(self, entry: Any) -> ProviderResult:
        if isinstance(entry, ProviderResult):
            return entry
        if isinstance(entry, str):
            return self._text_result(entry)
        if isinstance(entry, dict) and entry.get("name"):
            args = entry.get("arguments", {})
            call = ProviderToolCall(
                id=entry.get("id") or "call_mock",
                name=entry["name"],
                arguments=args if isinstance(args, str) else json.dumps(args),
            )
            message = ProviderMessage(role="assistant", content=None, tool_calls=[call], finish_reason="tool_calls", index=0)
            return ProviderResult(messages=[message], raw_response={"mock": True}, model="mock")
        raise ProviderRuntimeError(f"unsupported mock script entry: {entry!r}")

    def _text_result(self, text: str) -> ProviderResult:
        message = ProviderMessage(role="assistant", content=text, finish_reason="stop", index=0)
        return ProviderResult(
            messages=[message],
            raw_response={"mock": True},
            usage={"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
            model="mock",
        )

    def _mock_spec(self, messages: List[Dict[str, Any]]) -> str:
        prompt = ""
        for msg in messages:
            if msg.get("role") == "user":
                prompt = str(msg.get("content") or "")
        words = re.findall(r"[a-z0-9]+", prompt.lower())
        stop = {"a", "an", "the", "for", "of", "to", "and", "with", "that", "app", "tool"}
        name = "-".join([w for w in words if w not in stop][:3]) or "spawned-project"
        platform = "web"
        for candidate in ("cli", "api", "ios", "android", "desktop"):
            if candidate in words:
                platform = candidate
                break
        spec = {
            "name": name,
            "description": f"A {platform} project: {prompt.strip()[:120] or name}.",
            "platform": platform,
            "features": ["Core workflow", "Configuration", "Helpful error messages"],
            "summary": f"I'll build {name} as a {platform} project. Review the plan and approve it, or describe changes.",
        }
        return "```json\n" + json.dumps(spec, indent=2) + "\n```"

    def _mock_build_step(self, messages: List[Dict[str, Any]]) -> str:
        prior_calls = sum(
            len(msg.get("tool_calls") or []) for msg in messages if msg.get("role") == "assistant"
        )
        if prior_calls == 0:
            package = {"name": "spawned-project", "version": "0.1.0", "scripts": {"start": "node index.js"}}
            call = {"name": "write_file", "arguments": {"path": "package.json", "content": json.dumps(package, indent=2)}}
            return "Writing the package manifest first.\n" + json.dumps(call)
        if prior_calls == 1:
            call = {"name": "write_file", "arguments": {"path": "index.js", "content": "console.log('hello from spawn');\n"}}
            return "Writing the entry point.\n" + json.dumps(call)
        return json.dumps({"name": "done", "arguments": {"summary": "Wrote package.json and index.js."}})


provider_registry.register_runtime("mock_chat", MockRuntime)


__all__ = [
    "ProviderRuntime",
    "ProviderRuntimeContext",
    "ProviderRuntimeError",
    "ProviderRuntimeRegistry",
    "ProviderResult",
    "ProviderMessage",
    "ProviderToolCall",
    "provider_registry",
    "OpenAIChatRuntime",
    "MockClient",
    "MockRuntime",
]
