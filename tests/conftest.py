import os
import sys
from typing import Any, List, Optional

import pytest


def pytest_configure(config):
    # Register custom marks used by some tests to silence warnings
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow (deselect with '-m \"not slow\"')",
    )


# Ensure project root is on sys.path so tests run from a plain checkout
ROOT = os.path.dirname(os.path.abspath(__file__))
PROJ = os.path.abspath(os.path.join(ROOT, os.pardir))
if PROJ not in sys.path:
    sys.path.insert(0, PROJ)

# Tests that need Ray start a private local cluster
os.environ.setdefault("RAY_ADDRESS", "local")
os.environ.setdefault("RAY_DASHBOARD_PORT", "8299")

# Environment overrides would leak into config tests
for _var in ("SPAWNSMITH_MODEL", "SPAWNSMITH_LOCAL_MODE", "SPAWNSMITH_DB", "SPAWNSMITH_BLOB_ROOT"):
    os.environ.pop(_var, None)

from spawnsmith.config import load_spawn_config  # noqa: E402
from spawnsmith.model_client import ModelClient  # noqa: E402
from spawnsmith.provider_routing import provider_router  # noqa: E402
from spawnsmith.provider_runtime import MockClient, MockRuntime  # noqa: E402
from spawnsmith.session.spawn_session import SpawnSession  # noqa: E402
from spawnsmith.utils.local_ray import local_actor  # noqa: E402


SPEC_JSON = (
    '{"name": "todo-cli", "description": "A command line todo list.", "platform": "cli", '
    '"features": ["Add tasks", "List tasks", "Complete tasks"], '
    '"summary": "I\'ll build a small todo CLI. Review the plan and approve it, or describe changes."}'
)


def make_client(script: Optional[List[Any]] = None) -> ModelClient:
    """ModelClient backed by the mock runtime; ``None`` uses its built-in heuristics."""
    runtime = MockRuntime(provider_router.providers["mock"])
    return ModelClient(runtime, MockClient(script), "scripted")


def write_call(path: str, content: str) -> dict:
    return {"name": "write_file", "arguments": {"path": path, "content": content}}


def done_call(summary: str = "All done.") -> dict:
    return {"name": "done", "arguments": {"summary": summary}}


@pytest.fixture
def spawn_config(tmp_path):
    return load_spawn_config(overrides={
        "providers": {"default_model": "mock/scripted"},
        "build": {"install_commands": {}, "exec_timeout": 10},
        "storage": {"database": str(tmp_path / "spawns.db"), "blob_root": str(tmp_path / "blobs")},
        "sandbox": {"root": str(tmp_path / "sandboxes")},
        "logging": {"enabled": True, "root_dir": str(tmp_path / "runs")},
        "runtime": {"local_mode": True},
    })


@pytest.fixture
def make_session(spawn_config):
    """Factory for in-process sessions driven by a scripted model."""

    def _make(script: Optional[List[Any]] = None, session_id: str = "test-session"):
        client = make_client(script)
        proxy = local_actor(SpawnSession, session_id, spawn_config, local_mode=True, model_client=client)
        return proxy.instance, client.client

    return _make
