"""
Recover tool calls that a model printed as text instead of returning them
as structured tool calls.

Shapes seen in the wild:

    <tool_call>{"name": "exec", "arguments": {"command": "ls"}}</tool_call>
    {"type": "function", "name": "exec", "parameters": {"command": "ls"}}
    {"name": "exec", "arguments": {'command': 'ls'}}

Parsing is layered: direct JSON first, then a name regex plus a quote-aware
brace scan for the argument block, then a lenient normalization of the
argument text. Each candidate yields a tagged outcome; unparseable candidates
are reported, never raised.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

TAG_PATTERN = re.compile(r"<(tool_call|function_call|TOOL_CALL)>\s*(.*?)\s*</\1>", re.DOTALL)
PYTHON_TAG = "<|python_tag|>"
NAME_KEY = re.compile(r"""["']name["']\s*:""")
NAME_VALUE = re.compile(r"""["']name["']\s*:\s*["']([^"']+)["']""")
ARGS_KEY = re.compile(r"""["'](?:arguments|parameters)["']\s*:\s*""")
EMPTY_FENCE = re.compile(r"```[A-Za-z0-9_-]*\s*```")
ARRAY_RESIDUE = re.compile(r"\[[\s,]*\]")

_BARE_LITERALS = {"True": "true", "False": "false", "None": "null"}


@dataclass
class MatchedToolCall:
    name: str
    arguments: Dict[str, Any]
    span: Tuple[int, int]
    strategy: str


@dataclass
class UnparseableCandidate:
    text: str
    span: Tuple[int, int]
    reason: str


ParseOutcome = Union[MatchedToolCall, UnparseableCandidate]


@dataclass
class TextToolCallExtraction:
    outcomes: List[ParseOutcome] = field(default_factory=list)
    remainder: str = ""

    @property
    def matched(self) -> List[MatchedToolCall]:
        return [o for o in self.outcomes if isinstance(o, MatchedToolCall)]

    @property
    def unparseable(self) -> List[UnparseableCandidate]:
        return [o for o in self.outcomes if isinstance(o, UnparseableCandidate)]


def find_balanced_end(text: str, start: int) -> Optional[int]:
    """Index just past the brace matching ``text[start]``, or None.

    Single- and double-quoted literals are skipped so braces inside string
    values do not move the depth counter.
    """
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx + 1
    return None


def normalize_json_like(text: str) -> str:
    """Coerce Python-ish / sloppy JSON towards strict JSON.

    Single-quoted strings become double-quoted, bare True/False/None become
    JSON literals, and trailing commas before a closing bracket are dropped.
    String contents are left alone.
    """
    out: List[str] = []
    quote: Optional[str] = None
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if quote == '"':
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                quote = None
        elif quote == "'":
            if ch == "\\" and i + 1 < n:
                nxt = text[i + 1]
                out.append("'" if nxt == "'" else "\\" + nxt)
                i += 2
                continue
            if ch == "'":
                out.append('"')
                quote = None
            elif ch == '"':
                out.append('\\"')
            else:
                out.append(ch)
        elif ch == '"':
            quote = '"'
            out.append(ch)
        elif ch == "'":
            quote = "'"
            out.append('"')
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
            out.append(ch)
        elif ch.isalpha():
            j = i
            while j < n and (text[j].isalnum() or text[j] == "_"):
                j += 1
            word = text[i:j]
            out.append(_BARE_LITERALS.get(word, word))
            i = j
            continue
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def _loads(text: str) -> Any:
    return json.loads(text, strict=False)


def load_arguments(text: str) -> Optional[Dict[str, Any]]:
    """Parse an argument block, retrying once after normalization."""
    for attempt in (text, normalize_json_like(text)):
        try:
            value = _loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            return load_arguments(value)
    return None


def _coerce_arguments(raw: Any) -> Optional[Dict[str, Any]]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        return load_arguments(raw) if raw.strip() else {}
    return None


def _calls_from_object(obj: Any) -> List[Tuple[str, Optional[Dict[str, Any]]]]:
    if isinstance(obj, list):
        calls: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        for item in obj:
            calls.extend(_calls_from_object(item))
        return calls
    if not isinstance(obj, dict):
        return []
    if isinstance(obj.get("tool_calls"), list):
        return _calls_from_object(obj["tool_calls"])
    fn = obj.get("function")
    if isinstance(fn, dict) and fn.get("name"):
        return [(str(fn["name"]), _coerce_arguments(fn.get("arguments", fn.get("parameters"))))]
    if isinstance(fn, str) and fn:
        return [(fn, _coerce_arguments(obj.get("arguments", obj.get("parameters"))))]
    name = obj.get("name")
    if isinstance(name, str) and name and ("arguments" in obj or "parameters" in obj):
        return [(name, _coerce_arguments(obj.get("arguments", obj.get("parameters"))))]
    return []


def _extract_quoted(text: str, start: int) -> Optional[str]:
    quote = text[start]
    escaped = False
    for idx in range(start + 1, len(text)):
        ch = text[idx]
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == quote:
            return text[start : idx + 1]
    return None


def parse_candidate(body: str, span: Tuple[int, int]) -> List[ParseOutcome]:
    """Parse one candidate block into tagged outcomes."""
    try:
        obj = _loads(body)
    except json.JSONDecodeError:
        obj = None
    if obj is not None:
        calls = _calls_from_object(obj)
        if calls:
            outcomes: List[ParseOutcome] = []
            for name, args in calls:
                if args is None:
                    outcomes.append(UnparseableCandidate(body, span, f"arguments for '{name}' are not an object"))
                else:
                    outcomes.append(MatchedToolCall(name, args, span, "json"))
            return outcomes

    name_match = NAME_VALUE.search(body)
    if not name_match:
        return [UnparseableCandidate(body, span, "no tool name")]
    args_match = ARGS_KEY.search(body, name_match.end()) or ARGS_KEY.search(body)
    if not args_match:
        return [UnparseableCandidate(body, span, "no arguments block")]

    arg_start = args_match.end()
    head = body[arg_start : arg_start + 1]
    if head == "{":
        arg_end = find_balanced_end(body, arg_start)
        if arg_end is None:
            return [UnparseableCandidate(body, span, "unbalanced arguments block")]
        args_text = body[arg_start:arg_end]
    elif head in ("'", '"'):
        literal = _extract_quoted(body, arg_start)
        if literal is None:
            return [UnparseableCandidate(body, span, "unterminated arguments string")]
        try:
            args_text = _loads(normalize_json_like(literal))
        except json.JSONDecodeError:
            return [UnparseableCandidate(body, span, "undecodable arguments string")]
    else:
        return [UnparseableCandidate(body, span, "arguments are not an object")]

    try:
        args = _loads(args_text)
        strategy = "extracted"
    except json.JSONDecodeError:
        args = load_arguments(args_text)
        strategy = "normalized"
    if not isinstance(args, dict):
        return [UnparseableCandidate(body, span, "arguments did not parse")]
    return [MatchedToolCall(name_match.group(1), args, span, strategy)]


def scan_candidates(text: str) -> List[Tuple[int, int, str]]:
    """Find candidate blocks as ``(start, end, body)``.

    Wrapper tags win when present; otherwise every outermost brace block that
    carries both a name key and an arguments/parameters key is a candidate.
    """
    tagged = [(m.start(), m.end(), m.group(2)) for m in TAG_PATTERN.finditer(text)]
    if tagged:
        return tagged

    candidates: List[Tuple[int, int, str]] = []
    pos = 0
    while True:
        start = text.find("{", pos)
        if start == -1:
            break
        end = find_balanced_end(text, start)
        if end is None:
            pos = start + 1
            continue
        block = text[start:end]
        if NAME_KEY.search(block) and ARGS_KEY.search(block):
            candidates.append((start, end, block))
        pos = end
    return candidates


def _strip_spans(text: str, spans: List[Tuple[int, int]]) -> str:
    for start, end in sorted(set(spans), reverse=True):
        text = text[:start] + text[end:]
    text = text.replace(PYTHON_TAG, "")
    text = EMPTY_FENCE.sub("", text)
    text = ARRAY_RESIDUE.sub("", text)
    return text.strip()


def extract_text_tool_calls(text: str) -> TextToolCallExtraction:
    """Extract every embedded tool call from ``text``.

    The remainder is ``text`` with the successfully parsed blocks removed;
    unparseable candidates stay in it.
    """
    if not text:
        return TextToolCallExtraction(remainder=text or "")
    outcomes: List[ParseOutcome] = []
    for start, end, body in scan_candidates(text):
        outcomes.extend(parse_candidate(body, (start, end)))
    consumed = [o.span for o in outcomes if isinstance(o, MatchedToolCall)]
    remainder = _strip_spans(text, consumed) if consumed else text
    return TextToolCallExtraction(outcomes=outcomes, remainder=remainder)
