from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SECRET_KEYS = {"api_key", "authorization", "openai_api_key", "openrouter_api_key"}


class RunLogger:
    """Per-build run artifacts: one directory per build, JSON per turn.

    Usage:
      rl = RunLogger(config)
      run_dir = rl.start_run(spawn_id)
      rl.write_json("turns/turn_1.json", {...})
    """

    def __init__(self, config: Dict[str, Any] | None = None) -> None:
        self.config = config or {}
        log_cfg = (self.config.get("logging") or {})
        self.enabled = bool(log_cfg.get("enabled", True))
        self.root_dir = Path((log_cfg.get("root_dir") or ".spawnsmith/runs")).resolve()
        self.redact_enabled = bool(log_cfg.get("redact", True))
        self.retention_max_runs = int((log_cfg.get("retention") or {}).get("max_runs", 0) or 0)
        self.run_dir: Optional[Path] = None

    def _now_ts(self) -> str:
        return _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%d-%H%M%S")

    def _redact(self, data: Any) -> Any:
        if not self.redact_enabled:
            return data

        def _rec(obj):
            if isinstance(obj, dict):
                return {
                    k: ("***REDACTED***" if str(k).lower() in SECRET_KEYS else _rec(v))
                    for k, v in obj.items()
                }
            if isinstance(obj, list):
                return [_rec(x) for x in obj]
            return obj

        return _rec(data)

    def start_run(self, spawn_id: str, label: str = "build") -> str:
        if not self.enabled:
            self.run_dir = None
            return ""
        ts = self._now_ts()
        sid_raw = str(spawn_id or "spawn")
        sid = (sid_raw.replace(os.sep, "_").replace("/", "_").replace("\\", "_").strip("_") or "spawn")[:32]
        run_dir = self.root_dir / f"{ts}_{sid}_{label}"
        suffix = 1
        while run_dir.exists():
            suffix += 1
            run_dir = self.root_dir / f"{ts}_{sid}_{label}_{suffix}"
        for sub in ["turns", "tool_results", "errors", "meta"]:
            (run_dir / sub).mkdir(parents=True, exist_ok=True)
        self.run_dir = run_dir
        self.write_json("meta/run_meta.json", {"run_dir": str(run_dir), "created_utc": ts, "spawn_id": spawn_id, "label": label})
        self._apply_retention()
        return str(run_dir)

    def _apply_retention(self) -> None:
        if self.retention_max_runs <= 0 or not self.root_dir.exists():
            return
        subdirs = [p for p in self.root_dir.iterdir() if p.is_dir()]
        subdirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        for old in subdirs[self.retention_max_runs:]:
            shutil.rmtree(old, ignore_errors=True)

    def write_json(self, rel_path: str, data: Any) -> str:
        if not self.run_dir:
            return ""
        path = (self.run_dir / rel_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            path.write_text(json.dumps(self._redact(data), indent=2, default=str), encoding="utf-8")
        except OSError as exc:
            logger.warning(f"Could not write run artifact {path}: {exc}")
            return ""
        return str(path)

    def end_run(self) -> None:
        self.run_dir = None
