"""Middleware that repairs tool calls a model wrote into its text.

Wraps a :class:`ModelClient`. Both the single-shot path (``generate``) and the
event path (``stream``) go through :meth:`ToolCallNormalizer.normalize`, so a
caller sees the same tool calls whichever interface it uses.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from .model_client import ModelClient
from .provider_ir import IRDeltaEvent
from .provider_runtime import ProviderResult, ProviderToolCall
from .provider_stream import simulate_stream
from .tool_calling.text_tool_calls import NAME_KEY, extract_text_tool_calls

logger = logging.getLogger(__name__)

PENDING_TOOL_CALLS = "tool_calls"


def synthetic_call_id() -> str:
    return f"tc_{uuid.uuid4().hex[:8]}"


class ToolCallNormalizer:
    def __init__(self, client: ModelClient) -> None:
        self.client = client

    def normalize(self, result: ProviderResult) -> ProviderResult:
        """Promote text-embedded tool calls to structured ones, in place.

        Text parsing only runs when the provider returned no structured tool
        calls at all. Unparseable candidates are logged and left in the text.
        """
        recovered = 0
        dropped = 0
        if not result.tool_calls:
            for message in result.messages:
                content = message.content or ""
                if not content or not NAME_KEY.search(content):
                    continue
                extraction = extract_text_tool_calls(content)
                for candidate in extraction.unparseable:
                    dropped += 1
                    logger.warning(
                        f"Dropping unparseable tool call candidate ({candidate.reason}): {candidate.text[:200]!r}"
                    )
                if not extraction.matched:
                    continue
                message.tool_calls = [
                    ProviderToolCall(
                        id=synthetic_call_id(),
                        name=match.name,
                        arguments=json.dumps(match.arguments),
                        synthetic=True,
                    )
                    for match in extraction.matched
                ]
                message.content = extraction.remainder or None
                recovered += len(extraction.matched)

        for message in result.messages:
            if message.tool_calls and message.finish_reason in (None, "stop"):
                message.finish_reason = PENDING_TOOL_CALLS

        if recovered or dropped:
            logger.info(f"Recovered {recovered} text tool call(s), dropped {dropped} candidate(s)")
        result.metadata["text_tool_calls"] = {"recovered": recovered, "dropped": dropped}
        return result

    def generate(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> ProviderResult:
        result = self.client.run(system_prompt, messages, tools=tools, tool_choice=tool_choice, max_tokens=max_tokens)
        return self.normalize(result)

    def stream(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> List[IRDeltaEvent]:
        """One blocking call, repaired, then replayed as delta events."""
        result = self.generate(system_prompt, messages, tools=tools, tool_choice=tool_choice, max_tokens=max_tokens)
        return simulate_stream(result)


__all__ = ["ToolCallNormalizer", "synthetic_call_id"]
