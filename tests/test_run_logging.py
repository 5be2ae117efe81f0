import json
from pathlib import Path

from spawnsmith.error_handling.error_handler import ErrorHandler
from spawnsmith.errors import NoFilesGeneratedError
from spawnsmith.logging_v2 import RunLogger


def _logger(tmp_path, **extra):
    return RunLogger({"logging": {"enabled": True, "root_dir": str(tmp_path / "runs"), **extra}})


def test_start_run_creates_layout(tmp_path):
    rl = _logger(tmp_path)
    run_dir = Path(rl.start_run("abc/def"))
    assert run_dir.name.endswith("_abc_def_build")
    for sub in ("turns", "tool_results", "errors", "meta"):
        assert (run_dir / sub).is_dir()
    meta = json.loads((run_dir / "meta" / "run_meta.json").read_text())
    assert meta["spawn_id"] == "abc/def"


def test_secrets_are_redacted(tmp_path):
    rl = _logger(tmp_path)
    rl.start_run("s1")
    path = rl.write_json("meta/request.json", {"headers": {"Authorization": "Bearer x"}, "api_key": "sk-1", "model": "m"})
    data = json.loads(Path(path).read_text())
    assert data == {"headers": {"Authorization": "***REDACTED***"}, "api_key": "***REDACTED***", "model": "m"}


def test_disabled_logger_writes_nothing(tmp_path):
    rl = RunLogger({"logging": {"enabled": False, "root_dir": str(tmp_path / "runs")}})
    assert rl.start_run("s1") == ""
    assert rl.write_json("x.json", {}) == ""
    assert not (tmp_path / "runs").exists()


def test_retention_keeps_newest_runs(tmp_path):
    rl = _logger(tmp_path, retention={"max_runs": 2})
    for i in range(4):
        rl.start_run(f"s{i}")
        rl.end_run()
    assert len(list((tmp_path / "runs").iterdir())) == 2


def test_tool_errors_are_json_for_the_model():
    handler = ErrorHandler()
    unknown = json.loads(handler.unknown_tool("rm_rf", ["write_file", "done"]))
    assert unknown == {
        "error": "Unknown tool 'rm_rf'. Available tools: done, write_file",
        "function": "rm_rf",
        "error_type": "unknown_tool",
    }
    invalid = json.loads(handler.invalid_arguments("exec", "'command' is a required property"))
    assert invalid["error_type"] == "invalid_arguments"


def test_session_error_snapshot_written_to_active_run(tmp_path):
    rl = _logger(tmp_path)
    run_dir = Path(rl.start_run("s1"))
    try:
        raise NoFilesGeneratedError("nothing happened")
    except NoFilesGeneratedError as exc:
        record = ErrorHandler(rl).handle_session_error(exc, {"spawn_id": "s1"})
    assert record["error_type"] == "NoFilesGeneratedError"
    assert "NoFilesGeneratedError" in record["traceback"]
    saved = json.loads((run_dir / "errors" / "error.json").read_text())
    assert saved["context"] == {"spawn_id": "s1"}
    assert saved["error"].startswith("Build produced no files")
