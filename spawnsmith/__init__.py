"""
spawnsmith - one natural-language request in, a generated project out.
"""

from .config import load_spawn_config
from .errors import NoFilesGeneratedError, SandboxExecutionError, SpawnError, SpecValidationError
from .service import SpawnService
from .spec_extraction import SpecResult

__version__ = "0.1.0"

__all__ = [
    "NoFilesGeneratedError",
    "SandboxExecutionError",
    "SpawnError",
    "SpawnService",
    "SpecResult",
    "SpecValidationError",
    "load_spawn_config",
]
