"""
Durable system of record for spawns and their generated files.

SQLite holds two tables: ``spawns`` (one row per spec) and ``spawn_files``
(one row per generated path, unique on ``(spawn_id, path)``). Deleting a
spawn cascades to its files.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SPAWN_STATUSES = ("pending", "running", "complete", "failed")

_UNSET: Any = object()


def infer_language(path: str) -> str:
    """Extension (with the dot) of the file name, or an empty string."""
    base = path.rsplit("/", 1)[-1]
    dot = base.rfind(".")
    return base[dot:] if dot > 0 else ""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SpawnRecord:
    id: str
    prompt: str
    name: str
    description: str
    platform: str
    features: List[str] = field(default_factory=list)
    status: str = "pending"
    error: Optional[str] = None
    build_log: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "name": self.name,
            "description": self.description,
            "platform": self.platform,
            "features": list(self.features),
            "status": self.status,
            "error": self.error,
            "buildLog": self.build_log,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class GeneratedFile:
    spawn_id: str
    path: str
    content: str
    language: str
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spawnId": self.spawn_id,
            "path": self.path,
            "content": self.content,
            "language": self.language,
            "createdAt": self.created_at,
        }


class SpawnStore:
    """SQLite-backed spawn and file rows."""

    def __init__(self, db_path: str = ".spawnsmith/spawns.db"):
        self.db_path = db_path
        self.lock = threading.Lock()
        parent = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(parent, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_database(self):
        with closing(self._connect()) as conn, conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS spawns (
                    id TEXT PRIMARY KEY,
                    prompt TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    features TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    error TEXT,
                    build_log TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS spawn_files (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    spawn_id TEXT NOT NULL REFERENCES spawns(id) ON DELETE CASCADE,
                    path TEXT NOT NULL,
                    content TEXT NOT NULL,
                    language TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    UNIQUE (spawn_id, path)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_spawns_created ON spawns(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_spawn_files_spawn ON spawn_files(spawn_id)")

    # --- writes
    def create_spawn(self, spawn_id: str, prompt: str, spec: Any) -> SpawnRecord:
        """Insert a ``pending`` row for a freshly extracted spec."""
        now = _now()
        with self.lock, closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO spawns (id, prompt, name, description, platform, features, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?)
                """,
                (spawn_id, prompt, spec.name, spec.description, spec.platform, json.dumps(list(spec.features)), now, now),
            )
        logger.info(f"Recorded spawn {spawn_id} ({spec.name})")
        return SpawnRecord(
            id=spawn_id,
            prompt=prompt,
            name=spec.name,
            description=spec.description,
            platform=spec.platform,
            features=list(spec.features),
            created_at=now,
            updated_at=now,
        )

    def update_spawn(self, spawn_id: str, *, status: Optional[str] = None, error: Any = _UNSET, build_log: Any = _UNSET) -> bool:
        if status is not None and status not in SPAWN_STATUSES:
            raise ValueError(f"Unknown spawn status: {status}")
        assignments = ["updated_at = ?"]
        params: List[Any] = [_now()]
        if status is not None:
            assignments.append("status = ?")
            params.append(status)
        if error is not _UNSET:
            assignments.append("error = ?")
            params.append(error)
        if build_log is not _UNSET:
            assignments.append("build_log = ?")
            params.append(build_log)
        params.append(spawn_id)
        with self.lock, closing(self._connect()) as conn, conn:
            cur = conn.execute(f"UPDATE spawns SET {', '.join(assignments)} WHERE id = ?", params)
            return cur.rowcount > 0

    def upsert_files(self, spawn_id: str, files: Dict[str, str]) -> int:
        """Insert or replace file rows; re-running with the same map is a no-op."""
        now = _now()
        rows = [(spawn_id, path, content, infer_language(path), now) for path, content in files.items()]
        with self.lock, closing(self._connect()) as conn, conn:
            conn.executemany(
                """
                INSERT INTO spawn_files (spawn_id, path, content, language, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (spawn_id, path) DO UPDATE SET content = excluded.content, language = excluded.language
                """,
                rows,
            )
        return len(rows)

    def delete_files(self, spawn_id: str) -> int:
        with self.lock, closing(self._connect()) as conn, conn:
            return conn.execute("DELETE FROM spawn_files WHERE spawn_id = ?", (spawn_id,)).rowcount

    def delete_spawn(self, spawn_id: str) -> bool:
        """Delete a spawn row; its files go with it."""
        with self.lock, closing(self._connect()) as conn, conn:
            deleted = conn.execute("DELETE FROM spawns WHERE id = ?", (spawn_id,)).rowcount > 0
        if deleted:
            logger.info(f"Deleted spawn {spawn_id}")
        return deleted

    # --- reads
    def _record(self, row: sqlite3.Row) -> SpawnRecord:
        return SpawnRecord(
            id=row["id"],
            prompt=row["prompt"],
            name=row["name"],
            description=row["description"],
            platform=row["platform"],
            features=json.loads(row["features"] or "[]"),
            status=row["status"],
            error=row["error"],
            build_log=row["build_log"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_spawn(self, spawn_id: str) -> Optional[SpawnRecord]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM spawns WHERE id = ?", (spawn_id,)).fetchone()
        return self._record(row) if row else None

    def list_spawns(self, limit: int = 50) -> List[SpawnRecord]:
        """Most recent spawns first."""
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM spawns ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._record(r) for r in rows]

    def list_files(self, spawn_id: str) -> List[GeneratedFile]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT spawn_id, path, content, language, created_at FROM spawn_files WHERE spawn_id = ? ORDER BY path",
                (spawn_id,),
            ).fetchall()
        return [GeneratedFile(r["spawn_id"], r["path"], r["content"], r["language"], r["created_at"]) for r in rows]

    def get_file(self, spawn_id: str, path: str) -> Optional[GeneratedFile]:
        with closing(self._connect()) as conn:
            r = conn.execute(
                "SELECT spawn_id, path, content, language, created_at FROM spawn_files WHERE spawn_id = ? AND path = ?",
                (spawn_id, path),
            ).fetchone()
        return GeneratedFile(r["spawn_id"], r["path"], r["content"], r["language"], r["created_at"]) if r else None

    def file_map(self, spawn_id: str) -> Dict[str, str]:
        return {f.path: f.content for f in self.list_files(spawn_id)}
