from .spawn_session import SpawnSession

__all__ = ["SpawnSession"]
