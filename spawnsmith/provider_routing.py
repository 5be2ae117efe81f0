"""
Provider routing for model ids.

Supports model ID prefixes like:
- openai/gpt-4o-mini
- openrouter/meta-llama/llama-3.3-70b-instruct
- mock/scripted

An id without a known prefix is treated as an OpenAI model name.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


@dataclass
class ProviderDescriptor:
    """Describes how to communicate with a specific provider runtime."""

    provider_id: str
    runtime_id: str
    base_url: Optional[str]
    api_key_env: str
    default_headers: Dict[str, str] = field(default_factory=dict)

    def resolve_api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env)


class ProviderRouter:
    """Maps model id prefixes to provider descriptors."""

    def __init__(self) -> None:
        self.providers: Dict[str, ProviderDescriptor] = {
            "openai": ProviderDescriptor(
                provider_id="openai",
                runtime_id="openai_chat",
                base_url=None,
                api_key_env="OPENAI_API_KEY",
            ),
            "openrouter": ProviderDescriptor(
                provider_id="openrouter",
                runtime_id="openrouter_chat",
                base_url="https://openrouter.ai/api/v1",
                api_key_env="OPENROUTER_API_KEY",
                default_headers={"X-Title": "spawnsmith"},
            ),
            "mock": ProviderDescriptor(
                provider_id="mock",
                runtime_id="mock_chat",
                base_url=None,
                api_key_env="MOCK_API_KEY",
            ),
        }

    def parse_model_id(self, model_id: str) -> Tuple[str, str]:
        """Split ``provider/model`` into its parts; bare names route to openai."""
        if "/" in model_id:
            prefix, rest = model_id.split("/", 1)
            if prefix in self.providers:
                return prefix, rest
        return "openai", model_id

    def get_runtime_descriptor(self, model_id: str) -> Tuple[ProviderDescriptor, str]:
        prefix, model = self.parse_model_id(model_id)
        return self.providers[prefix], model


provider_router = ProviderRouter()
