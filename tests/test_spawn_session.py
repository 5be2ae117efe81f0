import json
import os

import pytest

from spawnsmith.persistence import manifest_key
from spawnsmith.session.spawn_session import SpawnSession
from spawnsmith.utils.local_ray import local_actor

from conftest import SPEC_JSON, done_call, make_client, write_call

WEB_SPEC_JSON = json.dumps({
    "name": "todo-web",
    "description": "A browser todo list.",
    "platform": "web",
    "features": ["Add tasks", "Filter tasks"],
    "summary": "I'll build a web todo list instead.",
})


def _user_messages(request):
    return [m["content"] for m in request["messages"] if m["role"] == "user"]


def test_prompt_produces_spec_awaiting_approval(make_session):
    session, client = make_session([SPEC_JSON])
    reply = session.handle_message("todo app for the terminal")
    assert reply["type"] == "summary"
    assert reply["text"].startswith("I'll build a small todo CLI")
    assert reply["status"] == "awaiting-approval"

    state = session.get_state()
    assert state["status"] == "awaiting-approval"
    assert state["spawnId"] == reply["spawnId"]
    assert state["spec"]["features"] == ["Add tasks", "List tasks", "Complete tasks"]
    assert state["files"] == {}
    assert state["progress"] == {"completedFeatures": 0, "totalFeatures": 3}

    record = session.store.get_spawn(reply["spawnId"])
    assert record.status == "pending"
    assert record.prompt == "todo app for the terminal"


@pytest.mark.parametrize("token", ["approved", " Approved ", "APPROVED\n"])
def test_approval_token_is_case_and_whitespace_insensitive(make_session, token):
    session, _ = make_session([SPEC_JSON, write_call("main.py", "print('todo')"), done_call("Built the CLI.")])
    session.handle_message("todo app")
    reply = session.handle_message(token)
    assert reply["type"] == "build"
    assert reply["files"] == ["main.py"]
    assert reply["text"] == "Built the CLI."


def test_completed_build_agrees_with_durable_records(make_session):
    script = [
        SPEC_JSON,
        write_call("package.json", "{}"),
        write_call("src/index.js", "main()"),
        done_call("Done building."),
    ]
    session, _ = make_session(script)
    spawn_id = session.handle_message("todo app")["spawnId"]
    session.handle_message("approved")

    state = session.get_state()
    assert state["status"] == "complete"
    assert state["error"] is None
    assert state["progress"] == {"completedFeatures": 3, "totalFeatures": 3}
    assert state["activeFile"] == ""
    assert state["files"] == session.store.file_map(spawn_id)

    record = session.store.get_spawn(spawn_id)
    assert (record.status, record.error, record.build_log) == ("complete", None, "Done building.")
    assert session.blobs.read_manifest(spawn_id)["files"] == ["package.json", "src/index.js"]
    assert [f.language for f in session.store.list_files(spawn_id)] == [".json", ".js"]


def test_live_snapshots_track_build_progress(make_session):
    script = [SPEC_JSON, write_call("a.py", "1"), write_call("b.py", "2"), done_call()]
    session, _ = make_session(script)
    snapshots = []
    session.subscribe(snapshots.append)
    session.handle_message("todo app")
    session.handle_message("approved")

    statuses = [s["status"] for s in snapshots]
    assert statuses[0] == "idle"
    assert "extracting-spec" in statuses
    assert statuses[-1] == "complete"
    building = [s for s in snapshots if s["status"] == "building"]
    assert [s["activeFile"] for s in building] == ["", "a.py", "b.py"]
    assert all(s["progress"]["completedFeatures"] < 3 for s in building)
    assert session.get_state_version() == len(snapshots)


def test_revision_replaces_spec_and_spawn(make_session):
    session, client = make_session([SPEC_JSON, WEB_SPEC_JSON])
    first = session.handle_message("todo app")
    second = session.handle_message("make it a web app")
    assert second["type"] == "summary"
    assert second["spawnId"] != first["spawnId"]
    assert session.get_state()["spec"]["platform"] == "web"
    assert session.store.get_spawn(first["spawnId"]) is None
    assert session.store.get_spawn(second["spawnId"]) is not None
    assert _user_messages(client.requests[1]) == ["todo app\n\nRevisions requested: make it a web app"]


def test_build_without_files_fails(make_session):
    session, _ = make_session([SPEC_JSON, "Sorry, I cannot write files today."])
    spawn_id = session.handle_message("todo app")["spawnId"]
    reply = session.handle_message("approved")
    assert reply["type"] == "error"
    assert reply["text"].startswith("Build produced no files")
    assert "Sorry, I cannot write files today." in reply["text"]

    state = session.get_state()
    assert state["status"] == "failed"
    assert state["spec"] is not None
    assert state["error"] == reply["text"]
    record = session.store.get_spawn(spawn_id)
    assert record.status == "failed"
    assert record.error == reply["text"]


def test_done_without_writes_fails(make_session):
    session, _ = make_session([SPEC_JSON, done_call("Nothing needed.")])
    session.handle_message("todo app")
    reply = session.handle_message("approved")
    assert reply["type"] == "error"
    assert reply["text"] == "Build produced no files. Model output: Nothing needed."


def test_step_cap_without_writes_fails(spawn_config):
    spawn_config["build"]["max_steps"] = 2
    exec_call = {"name": "exec", "arguments": {"command": "true"}}
    client = make_client([SPEC_JSON, exec_call, exec_call])
    session = local_actor(SpawnSession, "capped", spawn_config, local_mode=True, model_client=client).instance
    session.handle_message("todo app")
    reply = session.handle_message("approved")
    assert reply["type"] == "error"
    assert reply["text"].startswith("Build produced no files")
    assert len(client.client.requests) == 3


def test_provider_failure_during_build_cleans_up_sandbox(make_session, spawn_config):
    session, _ = make_session([SPEC_JSON])
    spawn_id = session.handle_message("todo app")["spawnId"]
    reply = session.handle_message("approved")
    assert reply["type"] == "error"
    assert reply["text"] == "mock script exhausted"
    assert session.store.get_spawn(spawn_id).status == "failed"
    assert os.listdir(spawn_config["sandbox"]["root"]) == []


def test_failed_build_keeps_live_files_in_step_with_durable_rows(make_session):
    script = [SPEC_JSON, write_call("a.txt", "A"), write_call("a.txt/b.txt", "B")]
    session, _ = make_session(script)
    spawn_id = session.handle_message("todo app")["spawnId"]
    reply = session.handle_message("approved")
    assert reply["type"] == "error"

    state = session.get_state()
    assert state["status"] == "failed"
    assert state["files"] == session.store.file_map(spawn_id) == {}


def test_failed_feedback_restores_files_from_before_the_cycle(make_session):
    script = [
        SPEC_JSON,
        write_call("a.txt", "A"),
        done_call(),
        write_call("a.txt", "A2"),
        write_call("a.txt/b.txt", "B"),
    ]
    session, _ = make_session(script)
    spawn_id = session.handle_message("todo app")["spawnId"]
    session.handle_message("approved")
    reply = session.handle_message("nest b.txt under a.txt")
    assert reply["type"] == "error"

    state = session.get_state()
    assert state["status"] == "failed"
    assert state["files"] == session.store.file_map(spawn_id) == {"a.txt": "A"}
    assert session.store.get_spawn(spawn_id).status == "failed"


def test_failed_extraction_records_nothing(make_session):
    session, _ = make_session(["definitely not json", SPEC_JSON])
    reply = session.handle_message("todo app")
    assert reply["type"] == "error"
    assert "not valid JSON" in reply["text"]
    state = session.get_state()
    assert state["status"] == "failed"
    assert state["spawnId"] is None
    assert session.store.list_spawns() == []

    retry = session.handle_message("todo app")
    assert retry["type"] == "summary"
    assert session.get_state()["error"] is None


def test_feedback_extends_existing_files(make_session):
    script = [
        SPEC_JSON,
        write_call("a.txt", "A"),
        done_call("First pass."),
        {"name": "read_file", "arguments": {"path": "a.txt"}},
        write_call("b.txt", "B"),
        done_call("Added b."),
    ]
    session, client = make_session(script)
    spawn_id = session.handle_message("todo app")["spawnId"]
    session.handle_message("approved")
    reply = session.handle_message("please add b.txt")

    assert reply["type"] == "build"
    assert reply["files"] == ["a.txt", "b.txt"]
    assert session.get_state()["files"] == {"a.txt": "A", "b.txt": "B"}
    assert session.store.file_map(spawn_id) == {"a.txt": "A", "b.txt": "B"}
    assert session.store.get_spawn(spawn_id).build_log == "Added b."
    assert session.blobs.read_manifest(spawn_id)["files"] == ["a.txt", "b.txt"]

    feedback_request = client.requests[4]
    assert feedback_request["messages"][0]["content"].endswith("User feedback: please add b.txt")
    assert feedback_request["messages"][-1] == {"role": "tool", "tool_call_id": "call_mock", "content": "A"}


def test_feedback_after_failed_build_retries(make_session):
    session, _ = make_session([SPEC_JSON, "no tools for you", write_call("a.txt", "A"), done_call()])
    spawn_id = session.handle_message("todo app")["spawnId"]
    assert session.handle_message("approved")["type"] == "error"
    reply = session.handle_message("try again")
    assert reply["type"] == "build"
    assert session.store.get_spawn(spawn_id).status == "complete"
    assert session.get_state()["error"] is None


def test_feedback_progress_starts_from_zero(make_session):
    script = [SPEC_JSON, write_call("a.txt", "A"), done_call(), write_call("b.txt", "B"), done_call()]
    session, _ = make_session(script)
    session.handle_message("todo app")
    session.handle_message("approved")
    snapshots = []
    session.subscribe(snapshots.append)
    session.handle_message("add b.txt")

    building = [s for s in snapshots if s["status"] == "building"]
    assert building[0]["progress"]["completedFeatures"] == 0
    assert building[0]["files"] == {"a.txt": "A"}
    assert snapshots[-1]["progress"]["completedFeatures"] == 3


def test_blank_message_while_awaiting_approval_revises(make_session):
    session, client = make_session([SPEC_JSON, WEB_SPEC_JSON])
    first = session.handle_message("todo app")
    reply = session.handle_message("   ")
    assert reply["type"] == "summary"
    assert reply["spawnId"] != first["spawnId"]
    assert len(client.requests) == 2


def test_reset_clears_everything(make_session):
    session, _ = make_session([SPEC_JSON, write_call("a.txt", "A"), done_call()])
    spawn_id = session.handle_message("todo app")["spawnId"]
    session.handle_message("approved")
    assert session.blobs.exists(manifest_key(spawn_id))

    reply = session.reset()
    assert reply == {"type": "reset", "text": "", "status": "idle"}
    assert session.get_state()["status"] == "idle"
    assert session.get_state()["files"] == {}
    assert session.store.get_spawn(spawn_id) is None
    assert session.store.list_files(spawn_id) == []
    assert not session.blobs.exists(manifest_key(spawn_id))
    assert session.get_session_info()["messages"] == 0


def test_reset_while_awaiting_and_idle(make_session):
    session, _ = make_session([SPEC_JSON])
    assert session.reset()["status"] == "idle"
    spawn_id = session.handle_message("todo app")["spawnId"]
    session.reset()
    assert session.store.get_spawn(spawn_id) is None
    assert session.get_state()["spec"] is None


def test_messages_while_building_are_ignored(make_session):
    session, _ = make_session([SPEC_JSON, write_call("a.txt", "A"), done_call()])
    interrupts = []

    def interrupt(snapshot):
        if snapshot["status"] == "building":
            interrupts.append(session.handle_message("stop!"))
            interrupts.append(session.reset())

    session.handle_message("todo app")
    session.subscribe(interrupt)
    reply = session.handle_message("approved")

    assert reply["type"] == "build"
    assert interrupts
    assert all(r["type"] == "ignored" for r in interrupts)
    assert session.get_state()["status"] == "complete"


def test_blank_message_before_any_spec_is_ignored(make_session):
    session, client = make_session([])
    assert session.handle_message("   ")["type"] == "ignored"
    assert client.requests == []
    assert session.get_state()["status"] == "idle"


def test_session_info(make_session):
    session, _ = make_session([SPEC_JSON], session_id="abc")
    session.handle_message("todo app")
    info = session.get_session_info()
    assert info["id"] == "abc"
    assert info["messages"] == 2
    assert info["status"] == "awaiting-approval"
    assert info["spawnId"] == session.get_state()["spawnId"]
    assert isinstance(info["created"], int)
