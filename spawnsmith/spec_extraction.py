"""Turn a natural-language request into a validated project spec."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from .errors import SpecValidationError
from .provider_runtime import ProviderRuntimeError

logger = logging.getLogger(__name__)

PLATFORMS = ("ios", "android", "web", "desktop", "cli", "api")

SPEC_SYSTEM_PROMPT = """You are a software architect. Given a natural language description, extract a structured specification as JSON.
Output a JSON object with exactly these fields:
- "name": short kebab-case identifier (e.g. "todo-app")
- "description": single sentence describing the project
- "platform": one of "ios", "android", "web", "desktop", "cli", "api"
- "features": array of 3-8 distinct feature strings
- "summary": 2-3 sentences addressed to the user explaining what you understood from their request, what you'll build, and the key features. Write conversationally (e.g. "I'll build a REST API that..."). End by telling them to review the plan and approve it, or describe any changes.
Output ONLY valid JSON, no extra text."""

SPEC_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "description": {"type": "string", "minLength": 1},
        "platform": {"type": "string", "enum": list(PLATFORMS)},
        "features": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
            "minItems": 1,
            "maxItems": 20,
        },
        "summary": {"type": "string", "minLength": 1},
    },
    "required": ["name", "description", "platform", "features", "summary"],
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


@dataclass
class SpecResult:
    name: str
    description: str
    platform: str
    features: List[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "platform": self.platform,
            "features": list(self.features),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpecResult":
        return cls(
            name=data["name"],
            description=data["description"],
            platform=data["platform"],
            features=list(data["features"]),
            summary=data["summary"],
        )


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def validate_spec(data: Any) -> SpecResult:
    """Check ``data`` against the spec schema, reporting every issue at once."""
    validator = Draft7Validator(SPEC_JSON_SCHEMA)
    issues = [
        f"{'.'.join(str(p) for p in error.absolute_path) or '(root)'}: {error.message}"
        for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
    ]
    if issues:
        raise SpecValidationError(f"AI response failed validation: {'; '.join(issues)}", issues=issues)
    return SpecResult.from_dict(data)


def parse_spec_text(text: str) -> SpecResult:
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise SpecValidationError(f"AI response is not valid JSON: {exc.msg}", raw=text) from exc
    return validate_spec(data)


def extract_spec(generator: Any, prompt: str, *, max_tokens: Optional[int] = 1024) -> SpecResult:
    """One-shot spec extraction through ``generator.generate`` (a ToolCallNormalizer)."""
    result = generator.generate(
        SPEC_SYSTEM_PROMPT,
        [{"role": "user", "content": prompt}],
        max_tokens=max_tokens,
    )
    text = (result.text or "").strip()
    if not text:
        raise ProviderRuntimeError("Model returned an empty response")
    spec = parse_spec_text(text)
    logger.info(f"Extracted spec '{spec.name}' ({spec.platform}, {len(spec.features)} features)")
    return spec


def spec_to_prompt(spec: SpecResult) -> str:
    return (
        "Build this project:\n"
        f"Name: {spec.name}\n"
        f"Description: {spec.description}\n"
        f"Platform: {spec.platform}\n"
        f"Features: {', '.join(spec.features)}"
    )
