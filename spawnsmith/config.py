from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    "providers": {
        "default_model": "openai/gpt-4o-mini",
        "max_output_tokens": 4096,
        "spec_max_tokens": 1024,
    },
    "build": {
        "max_steps": 20,
        "exec_timeout": 120,
        "install_timeout": 300,
        "install_commands": {
            "package.json": "npm install",
            "requirements.txt": "pip install -r requirements.txt",
        },
    },
    "session": {
        "approval_token": "approved",
    },
    "storage": {
        "database": ".spawnsmith/spawns.db",
        "blob_root": ".spawnsmith/blobs",
    },
    "sandbox": {
        "root": ".spawnsmith/sandboxes",
    },
    "logging": {
        "enabled": True,
        "root_dir": ".spawnsmith/runs",
        "redact": True,
    },
    "runtime": {
        "local_mode": False,
    },
}

_TRUTHY = {"1", "true", "yes", "on"}


def _load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two dicts recursively. Lists are replaced, not merged.
    Scalars replace. An empty dict replaces (clears) the base value.
    """
    out: Dict[str, Any] = dict(base)
    for k, v in (override or {}).items():
        if isinstance(out.get(k), dict) and isinstance(v, dict) and v:
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _resolve_extends(doc: Dict[str, Any], config_path: Path) -> Dict[str, Any]:
    extends_val = doc.get("extends")
    if not extends_val:
        return doc
    paths: List[Any] = list(extends_val) if isinstance(extends_val, (list, tuple)) else [extends_val]
    merged: Dict[str, Any] = {}
    for rel in paths:
        base_path = (config_path.parent / str(rel)).resolve()
        merged = _deep_merge(merged, _resolve_extends(_load_yaml(base_path), base_path))
    return _deep_merge(merged, {k: v for k, v in doc.items() if k != "extends"})


def _apply_env_overrides(doc: Dict[str, Any]) -> Dict[str, Any]:
    env = os.environ
    if env.get("SPAWNSMITH_MODEL"):
        doc["providers"]["default_model"] = env["SPAWNSMITH_MODEL"]
    if env.get("SPAWNSMITH_LOCAL_MODE"):
        doc["runtime"]["local_mode"] = env["SPAWNSMITH_LOCAL_MODE"].strip().lower() in _TRUTHY
    if env.get("SPAWNSMITH_DB"):
        doc["storage"]["database"] = env["SPAWNSMITH_DB"]
    if env.get("SPAWNSMITH_BLOB_ROOT"):
        doc["storage"]["blob_root"] = env["SPAWNSMITH_BLOB_ROOT"]
    return doc


def _validate(doc: Dict[str, Any]) -> None:
    providers = doc.get("providers") or {}
    if not providers.get("default_model"):
        raise ValueError("providers.default_model is required")
    for key in ("max_output_tokens", "spec_max_tokens"):
        if int(providers.get(key) or 0) <= 0:
            raise ValueError(f"providers.{key} must be a positive integer")

    build = doc.get("build") or {}
    for key in ("max_steps", "exec_timeout", "install_timeout"):
        if int(build.get(key) or 0) <= 0:
            raise ValueError(f"build.{key} must be a positive integer")
    if not isinstance(build.get("install_commands") or {}, dict):
        raise ValueError("build.install_commands must map manifest file names to commands")

    token = (doc.get("session") or {}).get("approval_token")
    if not isinstance(token, str) or not token.strip():
        raise ValueError("session.approval_token must be a non-empty string")

    storage = doc.get("storage") or {}
    for key in ("database", "blob_root"):
        if not storage.get(key):
            raise ValueError(f"storage.{key} is required")
    if not (doc.get("sandbox") or {}).get("root"):
        raise ValueError("sandbox.root is required")


def load_spawn_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Defaults, then the YAML file (with ``extends``), then ``overrides``, then env.
    Raises ValueError when the result is invalid.
    """
    doc = copy.deepcopy(DEFAULT_CONFIG)
    if config_path:
        path = Path(config_path).resolve()
        doc = _deep_merge(doc, _resolve_extends(_load_yaml(path), path))
    if overrides:
        doc = _deep_merge(doc, overrides)
    doc = _apply_env_overrides(doc)
    _validate(doc)
    doc["session"]["approval_token"] = doc["session"]["approval_token"].strip().lower()
    return doc
