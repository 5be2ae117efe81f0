import contextlib
import os
import shutil
import signal
import subprocess
import tempfile
from typing import Any, Callable, Dict, List, Optional

import ray

from .utils.local_ray import local_actor

WORKSPACE_PREFIX = "/workspace/"


def normalize_relpath(path: str) -> str:
    """Canonical workspace-relative form of a model-supplied path."""
    path = (path or "").strip().replace("\\", "/")
    if path.startswith(WORKSPACE_PREFIX):
        path = path[len(WORKSPACE_PREFIX):]
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


@ray.remote
class WorkspaceSandbox:
    """Isolated working directory plus a command executor for one build."""

    def __init__(self, workspace: str):
        self.workspace = workspace
        self.destroyed = False
        os.makedirs(self.workspace, exist_ok=True)

    # --- Path helpers
    def _resolve_path(self, path: str) -> str:
        """
        Resolve a path relative to the workspace and ensure it stays inside.
        """
        ws = os.path.normpath(self.workspace)
        rel = normalize_relpath(path)
        if not rel:
            raise ValueError(f"Path refers to the workspace root: {path!r}")
        full = os.path.normpath(os.path.join(ws, rel))
        if not full.startswith(ws + os.sep):
            raise ValueError(f"Path escapes workspace: {path}")
        return full

    # --- File operations
    def write_text(self, path: str, content: str, encoding: str = "utf-8") -> dict:
        full = self._resolve_path(path)
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "w", encoding=encoding) as f:
            f.write(content)
        return {"path": normalize_relpath(path), "size": os.stat(full).st_size}

    def read_text(self, path: str, encoding: str = "utf-8") -> dict:
        full = self._resolve_path(path)
        with open(full, "r", encoding=encoding, errors="replace") as f:
            return {"path": normalize_relpath(path), "content": f.read()}

    def exists(self, path: str) -> bool:
        try:
            return os.path.exists(self._resolve_path(path))
        except ValueError:
            return False

    def list_files(self) -> List[str]:
        found: List[str] = []
        for root, dirs, files in os.walk(self.workspace):
            dirs[:] = [d for d in dirs if d not in (".git", "node_modules")]
            for name in files:
                full = os.path.join(root, name)
                found.append(os.path.relpath(full, self.workspace).replace(os.sep, "/"))
        return sorted(found)

    # --- Execution
    def run(self, cmd: str, timeout: Optional[int] = None, env: Optional[dict] = None) -> dict:
        """
        Execute a shell command in the workspace and capture output.

        Returns ``{"stdout", "stderr", "exit_code", "timed_out"}``; a timeout
        kills the process and reports exit code -9.
        """
        merged_env = os.environ.copy()
        if env:
            merged_env.update(env)

        proc = subprocess.Popen(
            cmd,
            cwd=self.workspace,
            shell=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=merged_env,
            start_new_session=True,
        )
        try:
            out, err = proc.communicate(timeout=timeout)
            return {"stdout": out or "", "stderr": err or "", "exit_code": proc.returncode, "timed_out": False}
        except subprocess.TimeoutExpired:
            with contextlib.suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
            out, err = proc.communicate()
            err = (err or "") + f"\nCommand timed out after {timeout}s"
            return {"stdout": out or "", "stderr": err.lstrip("\n"), "exit_code": -9, "timed_out": True}

    def destroy(self) -> None:
        if os.path.isdir(self.workspace):
            shutil.rmtree(self.workspace, ignore_errors=True)
        self.destroyed = True

    def get_workspace(self) -> str:
        return self.workspace


def new_workspace_sandbox(root: str, *, local_mode: bool, session_id: Optional[str] = None) -> Any:
    """Create a fresh sandbox under ``root``; returns an actor handle (or local proxy)."""
    os.makedirs(root, exist_ok=True)
    prefix = f"spawn-{session_id[:12].replace(os.sep, '_')}-" if session_id else "spawn-"
    workspace = tempfile.mkdtemp(prefix=prefix, dir=root)
    if local_mode:
        return local_actor(WorkspaceSandbox, workspace=workspace)
    return WorkspaceSandbox.remote(workspace=workspace)


def seed_sandbox(sandbox: Any, files: Dict[str, str], get: Callable[[Any], Any]) -> None:
    for path, content in files.items():
        get(sandbox.write_text.remote(path, content))


def destroy_sandbox(sandbox: Any, *, local_mode: bool, get: Callable[[Any], Any]) -> None:
    try:
        get(sandbox.destroy.remote())
    finally:
        if not local_mode:
            ray.kill(sandbox)
