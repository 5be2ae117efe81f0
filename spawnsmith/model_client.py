"""Model client: one blocking call against a routed provider runtime."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .provider_routing import provider_router
from .provider_runtime import (
    ProviderResult,
    ProviderRuntime,
    ProviderRuntimeContext,
    provider_registry,
)

logger = logging.getLogger(__name__)


class ModelClient:
    """Invokes a text/tool-calling model.

    The result may carry structured tool calls or plain text that merely embeds
    pseudo tool-call JSON; repairing that is the normalizer's job, not ours.
    """

    def __init__(self, runtime: ProviderRuntime, client: Any, model: str, config: Optional[Dict[str, Any]] = None) -> None:
        self.runtime = runtime
        self.client = client
        self.model = model
        self.config = config or {}

    def run(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> ProviderResult:
        request_messages = [{"role": "system", "content": system_prompt}] + list(messages)
        logger.debug(
            f"model call: model={self.model} messages={len(request_messages)} tools={len(tools or [])}"
        )
        return self.runtime.invoke(
            client=self.client,
            model=self.model,
            messages=request_messages,
            tools=tools,
            tool_choice=tool_choice,
            max_tokens=max_tokens,
            context=ProviderRuntimeContext(agent_config=self.config),
        )


def create_model_client(config: Dict[str, Any], model_id: Optional[str] = None) -> ModelClient:
    """Build a :class:`ModelClient` for ``model_id`` (defaults to ``providers.default_model``)."""
    providers_cfg = config.get("providers") or {}
    model_id = model_id or str(providers_cfg.get("default_model", "openai/gpt-4o-mini"))
    descriptor, model = provider_router.get_runtime_descriptor(model_id)
    runtime = provider_registry.create_runtime(descriptor)
    client = runtime.create_client(
        descriptor.resolve_api_key(),
        base_url=descriptor.base_url,
        default_headers=descriptor.default_headers,
    )
    logger.info(f"Using model {model} via {descriptor.provider_id} ({descriptor.runtime_id})")
    return ModelClient(runtime, client, model, config)
