"""Replay a complete provider result as an ordered delta-event sequence.

Consumers read model output through this event interface whether or not the
provider streamed; only the single-shot path exists, so the sequence is built
from a finished :class:`ProviderResult`.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Iterable, List, Optional

from .provider_ir import IRDeltaEvent, IRFinish, IRToolCall, StreamedTurn
from .provider_runtime import ProviderResult, ProviderToolCall


def _ir_tool_call(tool_call: ProviderToolCall) -> IRToolCall:
    args = tool_call.arguments
    if not isinstance(args, str):
        args = json.dumps(args)
    return IRToolCall(
        id=tool_call.id or f"tc_{uuid.uuid4().hex[:8]}",
        name=tool_call.name or "",
        args=args or "{}",
        tool_call_type="function",
    )


def simulate_stream(result: Optional[ProviderResult]) -> List[IRDeltaEvent]:
    """Convert a ProviderResult into ``start``, ``text``, ``tool_call``, ``finish`` events."""
    events: List[IRDeltaEvent] = []

    def emit(event_type: str, payload: Any) -> None:
        events.append(IRDeltaEvent(cursor=str(len(events)), type=event_type, payload=payload))

    if result is None:
        emit("start", {"model": None})
        emit("finish", {"finish_reason": None, "usage": {}})
        return events

    emit("start", {"model": result.model})
    for idx, message in enumerate(result.messages or []):
        if message.content:
            emit("text", {"message_index": idx, "role": message.role, "delta": message.content})
        for tool_call in message.tool_calls:
            emit("tool_call", _ir_tool_call(tool_call).to_dict())
    emit("finish", {"finish_reason": result.finish_reason, "usage": dict(result.usage or {})})
    return events


def collect_stream(events: Iterable[IRDeltaEvent]) -> StreamedTurn:
    """Reassemble text, tool calls and the finish record from a delta sequence."""
    seen: List[IRDeltaEvent] = []
    text_parts: List[str] = []
    tool_calls: List[IRToolCall] = []
    finish = IRFinish(reason=None)
    for event in events:
        seen.append(event)
        payload = event.payload or {}
        if event.type == "text":
            text_parts.append(str(payload.get("delta", "")))
        elif event.type == "tool_call":
            tool_calls.append(
                IRToolCall(
                    id=payload["id"],
                    name=payload["name"],
                    args=payload.get("args") or "{}",
                    tool_call_type=payload.get("tool_call_type", "function"),
                )
            )
        elif event.type == "finish":
            finish = IRFinish(reason=payload.get("finish_reason"), usage=dict(payload.get("usage") or {}))
    return StreamedTurn(text="".join(text_parts), tool_calls=tool_calls, finish=finish, events=seen)


__all__ = ["simulate_stream", "collect_stream"]
