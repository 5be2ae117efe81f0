"""
Bounded tool-calling loop that writes a project into a sandbox.

Each step is one model turn read through the delta-event interface; at most
one tool call per turn is executed and its result is fed back as a ``tool``
message. The loop ends on ``done``, on a turn with no tool call, or after
``build.max_steps`` turns.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .error_handling.error_handler import ErrorHandler
from .logging_v2.run_logger import RunLogger
from .provider_ir import IRToolCall, StreamedTurn
from .provider_stream import collect_stream
from .spec_extraction import SpecResult, spec_to_prompt
from .tool_calling.build_tools import BUILD_TOOLS, BuildToolExecutor, ToolExecution

logger = logging.getLogger(__name__)

BUILD_SYSTEM_PROMPT = """You are a senior software engineer. You build complete projects by writing files.

You have these tools:
- write_file: Write a file (path relative to the project root).
- read_file: Read a file from the project.
- exec: Execute a shell command in the project root.
- done: Signal completion with a short summary.

Dependencies are installed automatically after you finish (npm install for package.json, pip install for requirements.txt). Do not run the install yourself.

Workflow:
1. Call write_file for the dependency manifest (package.json, requirements.txt, ...).
2. Call write_file for EACH source file (one file per call).
3. Use read_file and exec as needed to verify your work.
4. When ALL files are written, call done with a summary.

Rules:
- Respond with exactly one tool call and no other prose.
- Implement every feature from the spec. No stubs, no placeholders.
- Paths are relative to the project root (e.g. "src/index.ts", "package.json")."""


def build_feedback_prompt(feedback: str) -> str:
    return (
        f"{BUILD_SYSTEM_PROMPT}\n\n"
        "This is an existing project: the user's files are already in the project root. "
        "Apply the requested changes (do NOT start from scratch). Read existing files if needed, "
        "make changes, verify with exec, then call done.\n\n"
        f"User feedback: {feedback}"
    )


@dataclass
class BuildOutcome:
    files: Dict[str, str]
    build_log: Optional[str]
    steps: int
    stop_reason: str
    summary: Optional[str] = None
    install: Optional[Dict[str, Any]] = None
    transcript: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.files)


def _decode_arguments(call: IRToolCall) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(call.args or "{}")
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class BuildLoop:
    def __init__(
        self,
        normalizer: Any,
        config: Dict[str, Any],
        *,
        get: Callable[[Any], Any],
        run_logger: Optional[RunLogger] = None,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        self.normalizer = normalizer
        self.config = config
        self.get = get
        self.run_logger = run_logger
        self.error_handler = error_handler or ErrorHandler(run_logger)
        build_cfg = config.get("build") or {}
        self.max_steps = int(build_cfg.get("max_steps", 20))
        self.exec_timeout = int(build_cfg.get("exec_timeout", 120))
        self.install_timeout = int(build_cfg.get("install_timeout", 300))
        self.install_commands: Dict[str, str] = dict(build_cfg.get("install_commands") or {})
        self.max_tokens = int((config.get("providers") or {}).get("max_output_tokens", 4096))

    def run(
        self,
        spec: SpecResult,
        sandbox: Any,
        files: Dict[str, str],
        on_file_write: Callable[[str, str], None],
        *,
        feedback: Optional[str] = None,
        on_finish: Optional[Callable[[BuildOutcome], None]] = None,
    ) -> BuildOutcome:
        """Drive the model until it is done; ``files`` is updated in place and returned in the outcome."""
        system_prompt = build_feedback_prompt(feedback) if feedback else BUILD_SYSTEM_PROMPT
        messages: List[Dict[str, Any]] = [{"role": "user", "content": spec_to_prompt(spec)}]
        executor = BuildToolExecutor(
            sandbox,
            files,
            on_file_write,
            get=self.get,
            exec_timeout=self.exec_timeout,
            error_handler=self.error_handler,
        )

        texts: List[str] = []
        transcript: List[Dict[str, Any]] = []
        summary: Optional[str] = None
        stop_reason = "max_steps"
        steps = 0

        for step in range(1, self.max_steps + 1):
            steps = step
            turn = collect_stream(
                self.normalizer.stream(
                    system_prompt,
                    messages,
                    tools=BUILD_TOOLS,
                    tool_choice="required",
                    max_tokens=self.max_tokens,
                )
            )
            logger.info(
                f"Build step {step}: finish={turn.finish.reason} tool_calls={len(turn.tool_calls)} "
                f"text={turn.text[:200]!r}"
            )
            if turn.text.strip():
                texts.append(turn.text.strip())

            if not turn.tool_calls:
                stop_reason = "no_tool_call"
                self._record_turn(step, turn, None, transcript)
                break

            call = turn.tool_calls[0]
            if len(turn.tool_calls) > 1:
                dropped = ", ".join(c.name for c in turn.tool_calls[1:])
                logger.warning(f"Build step {step}: executing {call.name}, dropping extra tool calls: {dropped}")

            messages.append({
                "role": "assistant",
                "content": turn.text or None,
                "tool_calls": [
                    {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": call.args}}
                ],
            })
            execution = executor.execute(call.name, _decode_arguments(call))
            messages.append({"role": "tool", "tool_call_id": call.id, "content": execution.output})
            self._record_turn(step, turn, execution, transcript)

            if execution.terminal:
                summary = execution.output
                stop_reason = "done"
                break

        if stop_reason == "max_steps":
            logger.warning(f"Build stopped after reaching max_steps={self.max_steps}")

        install = self._auto_install(sandbox, files)
        outcome = BuildOutcome(
            files=files,
            build_log=summary or (texts[-1] if texts else None),
            steps=steps,
            stop_reason=stop_reason,
            summary=summary,
            install=install,
            transcript=transcript,
        )
        if self.run_logger:
            self.run_logger.write_json("meta/outcome.json", {
                "steps": steps,
                "stop_reason": stop_reason,
                "files": sorted(files),
                "summary": summary,
                "install": install,
            })
        if on_finish is not None:
            on_finish(outcome)
        return outcome

    def _record_turn(
        self,
        step: int,
        turn: StreamedTurn,
        execution: Optional[ToolExecution],
        transcript: List[Dict[str, Any]],
    ) -> None:
        entry = {
            "step": step,
            "text": turn.text,
            "finish_reason": turn.finish.reason,
            "usage": turn.finish.usage,
            "tool_calls": [c.to_dict() for c in turn.tool_calls],
            "tool_output": execution.output if execution else None,
        }
        transcript.append(entry)
        if self.run_logger:
            self.run_logger.write_json(f"turns/turn_{step}.json", {**entry, "events": [e.to_dict() for e in turn.events]})
            if execution is not None:
                self.run_logger.write_json(f"tool_results/step_{step}.json", {
                    "tool": execution.name,
                    "output": execution.output,
                    "terminal": execution.terminal,
                    "rejected": execution.rejected,
                })

    def _auto_install(self, sandbox: Any, files: Dict[str, str]) -> Optional[Dict[str, Any]]:
        """Run the install command for the first recognized manifest; failures are only logged."""
        for manifest, command in self.install_commands.items():
            if manifest not in files:
                continue
            logger.info(f"Running install step: {command}")
            try:
                result = self.get(sandbox.run.remote(command, timeout=self.install_timeout))
            except Exception as exc:
                logger.warning(f"Install step '{command}' raised: {exc}")
                return {"command": command, "error": str(exc)}
            if result.get("exit_code") != 0:
                logger.warning(f"Install step '{command}' exited {result.get('exit_code')}: {result.get('stderr', '')[:500]}")
            return {"command": command, "exit_code": result.get("exit_code")}
        return None
