from .session_state import BUSY_STATUSES, SpawnState, SpawnStatus, StateConsistencyError, progress_for

__all__ = ["BUSY_STATUSES", "SpawnState", "SpawnStatus", "StateConsistencyError", "progress_for"]
