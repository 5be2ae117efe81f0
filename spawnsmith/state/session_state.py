"""
Spawn session state: the lifecycle enum, the immutable state record and the
live snapshot shape pushed to observers
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from ..spec_extraction import SpecResult


class SpawnStatus(str, Enum):
    IDLE = "idle"
    EXTRACTING_SPEC = "extracting-spec"
    AWAITING_APPROVAL = "awaiting-approval"
    BUILDING = "building"
    COMPLETE = "complete"
    FAILED = "failed"


BUSY_STATUSES = (SpawnStatus.EXTRACTING_SPEC, SpawnStatus.BUILDING)
_FILE_STATUSES = (SpawnStatus.BUILDING, SpawnStatus.COMPLETE, SpawnStatus.FAILED)
_SPEC_STATUSES = (SpawnStatus.AWAITING_APPROVAL, SpawnStatus.BUILDING, SpawnStatus.COMPLETE)


class StateConsistencyError(ValueError):
    """A state transition produced a record that violates the lifecycle rules."""


def progress_for(file_count: int, feature_count: int) -> int:
    """Completed-feature estimate while building; never reaches the total early."""
    if feature_count <= 0:
        return 0
    ratio = file_count / max(file_count + 2, feature_count)
    return min(math.floor(ratio * feature_count), feature_count - 1)


@dataclass(frozen=True)
class SpawnState:
    spawn_id: Optional[str] = None
    spec: Optional[SpecResult] = None
    status: SpawnStatus = SpawnStatus.IDLE
    files: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    completed_features: int = 0
    active_file: str = ""

    @property
    def feature_count(self) -> int:
        return len(self.spec.features) if self.spec else 0

    def evolve(self, **changes: Any) -> "SpawnState":
        """Copy with ``changes`` applied; the result is checked before it is returned."""
        if "files" in changes:
            changes["files"] = dict(changes["files"])
        new = replace(self, **changes)
        new.check_consistency()
        return new

    def check_consistency(self) -> None:
        if self.files and self.status not in _FILE_STATUSES:
            raise StateConsistencyError(f"files present while {self.status.value}")
        if self.spec is None and self.status in _SPEC_STATUSES:
            raise StateConsistencyError(f"no spec while {self.status.value}")
        if self.error is not None and self.status != SpawnStatus.FAILED:
            raise StateConsistencyError(f"error set while {self.status.value}")
        if self.status == SpawnStatus.IDLE and (self.spec is not None or self.spawn_id is not None):
            raise StateConsistencyError("idle state carries a spawn")

    def snapshot(self) -> Dict[str, Any]:
        """Live shape pushed to observers."""
        return {
            "spawnId": self.spawn_id,
            "spec": self.spec.to_dict() if self.spec else None,
            "files": dict(self.files),
            "status": self.status.value,
            "error": self.error,
            "progress": {"completedFeatures": self.completed_features, "totalFeatures": self.feature_count},
            "activeFile": self.active_file,
        }
