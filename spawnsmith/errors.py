"""Error types surfaced by the spawn pipeline.

Every kind converges on the same session transition (``status = failed``), so
these classes exist to carry a readable message and, where useful, details.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SpawnError(RuntimeError):
    """Base class for failures raised by the spawn pipeline."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = details or {}


class SpecValidationError(SpawnError):
    """Spec extraction output could not be parsed or failed schema checks."""

    def __init__(self, message: str, *, issues: Optional[List[str]] = None, raw: Optional[str] = None) -> None:
        super().__init__(message, details={"issues": list(issues or []), "raw": raw})
        self.issues: List[str] = list(issues or [])


class SandboxExecutionError(SpawnError):
    """A sandbox file operation or command raised."""


class NoFilesGeneratedError(SpawnError):
    """The build loop ended cleanly but wrote nothing."""

    def __init__(self, model_output: Optional[str]) -> None:
        excerpt = model_output[:500] if model_output else "(empty)"
        super().__init__(f"Build produced no files. Model output: {excerpt}")
        self.model_output = model_output
