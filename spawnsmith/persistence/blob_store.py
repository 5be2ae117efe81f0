import json
import os
import shutil
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List


def manifest_key(spawn_id: str) -> str:
    return f"spawns/{spawn_id}/manifest.json"


class BlobStore:
    """JSON objects under a root directory, addressed by relative keys."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _p(self, rel: str) -> str:
        full = os.path.abspath(os.path.join(self.root, rel))
        if not full.startswith(self.root + os.sep) and full != self.root:
            raise ValueError("Path escapes storage root")
        return full

    def write_json(self, rel: str, content: Any) -> None:
        path = self._p(rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(content, f, indent=2)
        os.replace(tmp, path)

    def read_json(self, rel: str) -> Any:
        path = self._p(rel)
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def exists(self, rel: str) -> bool:
        return os.path.exists(self._p(rel))

    def list(self, rel_dir: str) -> List[str]:
        base = self._p(rel_dir)
        out: List[str] = []
        if not os.path.isdir(base):
            return out
        for dirpath, _, filenames in os.walk(base):
            for name in filenames:
                full = os.path.join(dirpath, name)
                out.append(os.path.relpath(full, self.root).replace(os.sep, "/"))
        out.sort()
        return out

    def delete_prefix(self, rel_dir: str) -> bool:
        base = self._p(rel_dir)
        if not os.path.isdir(base):
            return False
        shutil.rmtree(base)
        return True

    # --- spawn manifests
    def write_manifest(self, spawn_id: str, spec: Any, paths: Iterable[str]) -> Dict[str, Any]:
        """Rewrite the whole manifest for a spawn."""
        manifest = {
            "name": spec.name,
            "description": spec.description,
            "platform": spec.platform,
            "files": sorted(paths),
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        self.write_json(manifest_key(spawn_id), manifest)
        return manifest

    def read_manifest(self, spawn_id: str) -> Dict[str, Any]:
        return self.read_json(manifest_key(spawn_id))

    def delete_spawn(self, spawn_id: str) -> bool:
        return self.delete_prefix(f"spawns/{spawn_id}")
