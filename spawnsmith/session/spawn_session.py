from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import ray

from ..build_loop import BuildLoop, BuildOutcome
from ..config import load_spawn_config
from ..error_handling.error_handler import ErrorHandler
from ..errors import NoFilesGeneratedError
from ..live_state import LiveStateChannel
from ..logging_v2.run_logger import RunLogger
from ..model_client import ModelClient, create_model_client
from ..persistence.blob_store import BlobStore
from ..persistence.spawn_store import SpawnStore
from ..provider_normalizer import ToolCallNormalizer
from ..sandbox import destroy_sandbox, new_workspace_sandbox, seed_sandbox
from ..spec_extraction import SpecResult, extract_spec
from ..state.session_state import BUSY_STATUSES, SpawnState, SpawnStatus, progress_for
from ..utils.local_ray import object_getter

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@ray.remote
class SpawnSession:
    """
    One spawn conversation: prompt -> spec -> approval -> build -> feedback.

    Ray runs one method call at a time per actor, which is the message queue.
    In local mode an RLock gives the same ordering; a re-entrant call made
    while extracting or building (e.g. from a live-state subscriber) is ignored.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        *,
        local_mode: bool = False,
        live_hub: Any = None,
        model_client: Optional[ModelClient] = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.time_created = _now_ms()
        self.config = config or load_spawn_config()
        self.local_mode = local_mode
        self.get = object_getter(local_mode)
        self.approval_token = str(self.config["session"]["approval_token"]).strip().lower()
        self.messages: List[Dict[str, Any]] = []
        self.state = SpawnState()
        self._lock = threading.RLock()

        storage_cfg = self.config["storage"]
        self.store = SpawnStore(storage_cfg["database"])
        self.blobs = BlobStore(storage_cfg["blob_root"])
        self.sandbox_root = os.path.abspath(self.config["sandbox"]["root"])
        self.run_logger = RunLogger(self.config)
        self.error_handler = ErrorHandler(self.run_logger)
        self.live = LiveStateChannel(self.session_id, forward=live_hub)

        self._model_client = model_client
        self._normalizer: Optional[ToolCallNormalizer] = None
        self.live.publish(self.state.snapshot())

    # --- model plumbing
    @property
    def normalizer(self) -> ToolCallNormalizer:
        if self._normalizer is None:
            client = self._model_client or create_model_client(self.config)
            self._normalizer = ToolCallNormalizer(client)
        return self._normalizer

    # --- public API
    def get_session_info(self) -> Dict[str, Any]:
        return {
            "id": self.session_id,
            "created": self.time_created,
            "messages": len(self.messages),
            "status": self.state.status.value,
            "spawnId": self.state.spawn_id,
        }

    def get_state(self) -> Dict[str, Any]:
        return self.live.latest() or self.state.snapshot()

    def get_state_version(self) -> int:
        return self.live.version

    def subscribe(self, callback: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """In-process observers only; remote observers read the LiveStateHub."""
        return self.live.subscribe(callback)

    def handle_message(self, text: str) -> Dict[str, Any]:
        with self._lock:
            status = self.state.status
            if status in BUSY_STATUSES:
                logger.warning(f"Session {self.session_id}: ignoring message while {status.value}")
                return {"type": "ignored", "text": f"Session is busy ({status.value})", "status": status.value}
            if self.state.spec is None and not (text or "").strip():
                return {"type": "ignored", "text": "Empty message", "status": status.value}

            self.messages.append({"role": "user", "text": text, "time": _now_ms()})
            try:
                reply = self._dispatch(text)
            except Exception as exc:
                reply = self._fail(exc)
            self.messages.append({"role": "assistant", "text": reply.get("text", ""), "time": _now_ms()})
            return reply

    def reset(self) -> Dict[str, Any]:
        with self._lock:
            status = self.state.status
            if status in BUSY_STATUSES:
                logger.warning(f"Session {self.session_id}: ignoring reset while {status.value}")
                return {"type": "ignored", "text": f"Session is busy ({status.value})", "status": status.value}
            old_spawn_id = self.state.spawn_id
            self.messages = []
            self._set_state(SpawnState())
            if old_spawn_id:
                self._discard_spawn(old_spawn_id)
            logger.info(f"Session {self.session_id} reset")
            return {"type": "reset", "text": "", "status": SpawnStatus.IDLE.value}

    # --- dispatch
    def _dispatch(self, text: str) -> Dict[str, Any]:
        state = self.state
        if state.spec is None:
            return self._handle_spec_extraction(text)
        if state.status == SpawnStatus.AWAITING_APPROVAL:
            if text.strip().lower() == self.approval_token:
                return self._handle_build()
            return self._handle_spec_revision(text)
        return self._handle_feedback(text)

    def _handle_spec_extraction(self, prompt: str, discard_spawn_id: Optional[str] = None) -> Dict[str, Any]:
        self._transition(spawn_id=None, spec=None, files={}, error=None, completed_features=0,
                         active_file="", status=SpawnStatus.EXTRACTING_SPEC)
        if discard_spawn_id:
            self._discard_spawn(discard_spawn_id)

        spec = extract_spec(
            self.normalizer,
            prompt,
            max_tokens=int(self.config["providers"].get("spec_max_tokens", 1024)),
        )
        spawn_id = uuid.uuid4().hex
        self._transition(spawn_id=spawn_id, spec=spec, status=SpawnStatus.AWAITING_APPROVAL)
        self.store.create_spawn(spawn_id, prompt, spec)
        return {
            "type": "summary",
            "text": spec.summary,
            "status": SpawnStatus.AWAITING_APPROVAL.value,
            "spawnId": spawn_id,
            "spec": spec.to_dict(),
        }

    def _handle_spec_revision(self, feedback: str) -> Dict[str, Any]:
        original = next((m["text"] for m in self.messages if m["role"] == "user"), "")
        prompt = f"{original}\n\nRevisions requested: {feedback}" if original else feedback
        logger.info(f"Session {self.session_id}: revising spec")
        return self._handle_spec_extraction(prompt, discard_spawn_id=self.state.spawn_id)

    def _handle_build(self) -> Dict[str, Any]:
        spawn_id = self.state.spawn_id
        self._transition(status=SpawnStatus.BUILDING, files={}, error=None, completed_features=0, active_file="")
        self.store.update_spawn(spawn_id, status="running", error=None)
        return self._run_build(self.state.spec, spawn_id, seed_files={}, feedback=None)

    def _handle_feedback(self, feedback: str) -> Dict[str, Any]:
        spawn_id = self.state.spawn_id
        existing = dict(self.state.files)
        self._transition(status=SpawnStatus.BUILDING, error=None, completed_features=0, active_file="")
        self.store.update_spawn(spawn_id, status="running", error=None)
        return self._run_build(self.state.spec, spawn_id, seed_files=existing, feedback=feedback)

    # --- build
    def _run_build(
        self,
        spec: SpecResult,
        spawn_id: str,
        *,
        seed_files: Dict[str, str],
        feedback: Optional[str],
    ) -> Dict[str, Any]:
        self.run_logger.start_run(spawn_id, label="feedback" if feedback else "build")
        sandbox = new_workspace_sandbox(self.sandbox_root, local_mode=self.local_mode, session_id=self.session_id)
        files = dict(seed_files)
        loop = BuildLoop(
            self.normalizer,
            self.config,
            get=self.get,
            run_logger=self.run_logger,
            error_handler=self.error_handler,
        )
        try:
            if seed_files:
                seed_sandbox(sandbox, seed_files, self.get)
            outcome = loop.run(spec, sandbox, files, self._on_file_write, feedback=feedback)
            if not outcome.files:
                raise NoFilesGeneratedError(outcome.build_log)
        except Exception as exc:
            # durable rows still hold the files this build started from
            self._transition(files=seed_files, active_file="")
            self.error_handler.handle_session_error(exc, {"spawn_id": spawn_id, "feedback": feedback})
            raise
        finally:
            destroy_sandbox(sandbox, local_mode=self.local_mode, get=self.get)
            self.run_logger.end_run()

        self._transition(files=outcome.files, status=SpawnStatus.COMPLETE,
                         completed_features=len(spec.features), active_file="")
        self._persist_outcome(spawn_id, spec, outcome)
        return {
            "type": "build",
            "text": outcome.build_log or "",
            "status": SpawnStatus.COMPLETE.value,
            "spawnId": spawn_id,
            "files": sorted(outcome.files),
        }

    def _on_file_write(self, path: str, content: str) -> None:
        files = dict(self.state.files)
        files[path] = content
        self._transition(
            files=files,
            completed_features=progress_for(len(files), self.state.feature_count),
            active_file=path,
        )

    def _persist_outcome(self, spawn_id: str, spec: SpecResult, outcome: BuildOutcome) -> None:
        self.store.upsert_files(spawn_id, outcome.files)
        self.store.update_spawn(spawn_id, status="complete", error=None, build_log=outcome.build_log)
        self.blobs.write_manifest(spawn_id, spec, outcome.files.keys())
        logger.info(f"Spawn {spawn_id} complete: {len(outcome.files)} file(s) in {outcome.steps} step(s)")

    # --- state + failure
    def _set_state(self, state: SpawnState) -> None:
        state.check_consistency()
        self.state = state
        self.live.publish(state.snapshot())

    def _transition(self, **changes: Any) -> None:
        self._set_state(self.state.evolve(**changes))

    def _discard_spawn(self, spawn_id: str) -> None:
        self.store.delete_spawn(spawn_id)
        self.blobs.delete_spawn(spawn_id)

    def _fail(self, exc: Exception) -> Dict[str, Any]:
        message = str(exc) or exc.__class__.__name__
        logger.exception(f"Session {self.session_id} failed: {message}")
        self._transition(status=SpawnStatus.FAILED, error=message, active_file="")
        spawn_id = self.state.spawn_id
        if spawn_id:
            try:
                self.store.update_spawn(spawn_id, status="failed", error=message)
            except Exception:
                logger.exception(f"Could not record failure for spawn {spawn_id}")
        return {"type": "error", "text": message, "status": SpawnStatus.FAILED.value, "spawnId": spawn_id}
