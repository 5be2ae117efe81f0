from pathlib import Path

import pytest

from spawnsmith.config import DEFAULT_CONFIG, load_spawn_config

CONFIGS = Path(__file__).resolve().parent.parent / "configs"


def test_defaults_without_file():
    config = load_spawn_config()
    assert config["providers"]["default_model"] == "openai/gpt-4o-mini"
    assert config["build"]["max_steps"] == 20
    assert config["session"]["approval_token"] == "approved"
    assert config is not DEFAULT_CONFIG
    config["build"]["max_steps"] = 1
    assert DEFAULT_CONFIG["build"]["max_steps"] == 20


def test_offline_config_extends_default():
    config = load_spawn_config(CONFIGS / "offline.yaml")
    assert config["providers"]["default_model"] == "mock/scripted"
    assert config["providers"]["max_output_tokens"] == 4096
    assert config["runtime"]["local_mode"] is True
    assert config["build"]["install_commands"] == {}
    assert config["logging"]["retention"]["max_runs"] == 50


def test_nested_extends_and_overrides(tmp_path):
    (tmp_path / "base.yaml").write_text("build:\n  max_steps: 5\nsession:\n  approval_token: Ship It\n")
    (tmp_path / "mid.yaml").write_text("extends: base.yaml\nbuild:\n  exec_timeout: 30\n")
    (tmp_path / "top.yaml").write_text("extends: mid.yaml\nproviders:\n  default_model: openrouter/x-ai/grok\n")
    config = load_spawn_config(tmp_path / "top.yaml", overrides={"build": {"max_steps": 7}})
    assert config["build"]["max_steps"] == 7
    assert config["build"]["exec_timeout"] == 30
    assert config["build"]["install_timeout"] == 300
    assert config["providers"]["default_model"] == "openrouter/x-ai/grok"
    assert config["session"]["approval_token"] == "ship it"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("SPAWNSMITH_MODEL", "mock/scripted")
    monkeypatch.setenv("SPAWNSMITH_LOCAL_MODE", "yes")
    monkeypatch.setenv("SPAWNSMITH_DB", str(tmp_path / "x.db"))
    monkeypatch.setenv("SPAWNSMITH_BLOB_ROOT", str(tmp_path / "blobs"))
    config = load_spawn_config(overrides={"providers": {"default_model": "openai/gpt-4o"}})
    assert config["providers"]["default_model"] == "mock/scripted"
    assert config["runtime"]["local_mode"] is True
    assert config["storage"] == {"database": str(tmp_path / "x.db"), "blob_root": str(tmp_path / "blobs")}


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"build": {"max_steps": 0}}, "build.max_steps"),
        ({"providers": {"default_model": ""}}, "default_model"),
        ({"session": {"approval_token": "  "}}, "approval_token"),
        ({"build": {"install_commands": ["npm install"]}}, "install_commands"),
        ({"sandbox": {"root": ""}}, "sandbox.root"),
    ],
)
def test_invalid_config_raises(overrides, message):
    with pytest.raises(ValueError, match=message):
        load_spawn_config(overrides=overrides)
