"""
Entry point for driving spawn sessions and querying finished spawns.

Sessions run as named Ray actors (``spawn-session-<id>``), or in-process when
Ray is disabled or cannot start.
"""

from __future__ import annotations

import copy
import logging
import os
import uuid
from typing import Any, Callable, Dict, List, Optional

import ray

from .config import load_spawn_config
from .live_state import LiveStateHub
from .model_client import ModelClient
from .persistence.blob_store import BlobStore
from .persistence.spawn_store import SpawnStore
from .session.spawn_session import SpawnSession
from .utils.local_ray import LocalActorProxy, local_actor, object_getter

logger = logging.getLogger(__name__)

LIVE_STATE_HUB_NAME = "spawnsmith-live-state"


def _absolutize(config: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(config)
    for key in ("database", "blob_root"):
        out["storage"][key] = os.path.abspath(out["storage"][key])
    out["sandbox"]["root"] = os.path.abspath(out["sandbox"]["root"])
    if (out.get("logging") or {}).get("root_dir"):
        out["logging"]["root_dir"] = os.path.abspath(out["logging"]["root_dir"])
    return out


class SpawnService:
    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        config_path: Optional[str] = None,
        *,
        local_mode: Optional[bool] = None,
    ) -> None:
        self.config = _absolutize(config or load_spawn_config(config_path))
        runtime_cfg = self.config.get("runtime") or {}
        self.local_mode = bool(runtime_cfg.get("local_mode")) if local_mode is None else local_mode
        self.store = SpawnStore(self.config["storage"]["database"])
        self.blobs = BlobStore(self.config["storage"]["blob_root"])
        self._sessions: Dict[str, Any] = {}
        self._hub: Any = None
        self.get = object_getter(self.local_mode)
        self._initialized = False

    def initialize(self) -> None:
        if self._initialized:
            return
        if not self.local_mode:
            try:
                if not ray.is_initialized():
                    ray.init(address=os.environ.get("RAY_ADDRESS", "local"), include_dashboard=False)
            except Exception as exc:
                logger.warning(f"Ray unavailable ({exc}); using local in-process execution mode")
                self.local_mode = True
        if not self.local_mode:
            self._hub = LiveStateHub.options(
                name=LIVE_STATE_HUB_NAME, get_if_exists=True, max_concurrency=32
            ).remote()
        self.get = object_getter(self.local_mode)
        self._initialized = True

    # --- sessions
    def open_session(self, session_id: Optional[str] = None, model_client: Optional[ModelClient] = None) -> str:
        self.initialize()
        session_id = session_id or uuid.uuid4().hex
        if session_id in self._sessions:
            return session_id
        if self.local_mode:
            handle = local_actor(
                SpawnSession, session_id, self.config, local_mode=True, model_client=model_client
            )
        else:
            handle = SpawnSession.options(
                name=f"spawn-session-{session_id}", get_if_exists=True
            ).remote(session_id, self.config, local_mode=False, live_hub=self._hub, model_client=model_client)
        self._sessions[session_id] = handle
        logger.info(f"Opened session {session_id} ({'local' if self.local_mode else 'ray'})")
        return session_id

    def _session(self, session_id: str) -> Any:
        handle = self._sessions.get(session_id)
        if handle is None:
            raise KeyError(f"Unknown session: {session_id}")
        return handle

    def send(self, session_id: str, text: str) -> Dict[str, Any]:
        return self.get(self._session(session_id).handle_message.remote(text))

    def reset(self, session_id: str) -> Dict[str, Any]:
        return self.get(self._session(session_id).reset.remote())

    def state(self, session_id: str) -> Dict[str, Any]:
        return self.get(self._session(session_id).get_state.remote())

    def session_info(self, session_id: str) -> Dict[str, Any]:
        return self.get(self._session(session_id).get_session_info.remote())

    def subscribe(self, session_id: str, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        handle = self._session(session_id)
        if not isinstance(handle, LocalActorProxy):
            raise RuntimeError("subscribe() needs local mode; use wait_for_update() with Ray")
        return handle.instance.subscribe(callback)

    def wait_for_update(self, session_id: str, after_version: int = 0, timeout: float = 30.0) -> Optional[Dict[str, Any]]:
        """Next snapshot newer than ``after_version`` (``{"version", "snapshot"}``) or None."""
        handle = self._session(session_id)
        if isinstance(handle, LocalActorProxy):
            return handle.instance.live.wait_for_update(after_version, timeout=timeout)
        return ray.get(self._hub.wait_for_update.remote(session_id, after_version, timeout))

    def close_session(self, session_id: str) -> None:
        handle = self._sessions.pop(session_id, None)
        if handle is None:
            return
        if not isinstance(handle, LocalActorProxy):
            ray.kill(handle)
            self._hub.drop.remote(session_id)

    # --- durable queries
    def list_spawns(self, limit: int = 50) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.store.list_spawns(limit)]

    def get_spawn(self, spawn_id: str) -> Optional[Dict[str, Any]]:
        record = self.store.get_spawn(spawn_id)
        if record is None:
            return None
        data = record.to_dict()
        data["files"] = [f.to_dict() for f in self.store.list_files(spawn_id)]
        return data

    def list_files(self, spawn_id: str) -> List[Dict[str, Any]]:
        return [
            {"path": f.path, "language": f.language, "size": len(f.content.encode("utf-8"))}
            for f in self.store.list_files(spawn_id)
        ]

    def read_file(self, spawn_id: str, path: str) -> Optional[str]:
        generated = self.store.get_file(spawn_id, path)
        return generated.content if generated else None

    def delete_spawn(self, spawn_id: str) -> bool:
        deleted = self.store.delete_spawn(spawn_id)
        self.blobs.delete_spawn(spawn_id)
        return deleted

    def shutdown(self) -> None:
        for session_id in list(self._sessions):
            self.close_session(session_id)
