"""Provider-agnostic intermediate representation (IR) for streamed model turns."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


DeltaType = Literal["start", "text", "tool_call", "finish"]


@dataclass
class IRToolCall:
    id: str
    name: str
    args: str
    tool_call_type: str = "function"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "args": self.args, "tool_call_type": self.tool_call_type}


@dataclass
class IRDeltaEvent:
    cursor: str
    type: DeltaType
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"cursor": self.cursor, "type": self.type, "payload": self.payload}


@dataclass
class IRFinish:
    reason: Optional[str]
    usage: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamedTurn:
    """A turn reassembled from a delta event sequence."""

    text: str
    tool_calls: List[IRToolCall]
    finish: IRFinish
    events: List[IRDeltaEvent] = field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)
