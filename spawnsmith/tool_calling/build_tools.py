from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from jsonschema import ValidationError, validate

from ..error_handling.error_handler import ErrorHandler
from ..errors import SandboxExecutionError
from ..sandbox import normalize_relpath


@dataclass
class BuildToolParameter:
    name: str
    type: str = "string"
    description: str = ""
    required: bool = True


@dataclass
class BuildToolDefinition:
    name: str
    description: str
    parameters: List[BuildToolParameter] = field(default_factory=list)
    terminal: bool = False

    def parameters_schema(self) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for p in self.parameters:
            prop: Dict[str, Any] = {"type": p.type}
            if p.description:
                prop["description"] = p.description
            properties[p.name] = prop
            if p.required:
                required.append(p.name)
        return {"type": "object", "properties": properties, "required": required}


def to_openai_tool_schema(tool: BuildToolDefinition) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters_schema(),
        },
    }


BUILD_TOOL_DEFINITIONS: List[BuildToolDefinition] = [
    BuildToolDefinition(
        name="write_file",
        description="Create or overwrite a file in the project. Paths are relative to the project root.",
        parameters=[
            BuildToolParameter("path", description="File path relative to the project root, e.g. src/index.ts"),
            BuildToolParameter("content", description="Complete file contents"),
        ],
    ),
    BuildToolDefinition(
        name="read_file",
        description="Read a file from the project.",
        parameters=[BuildToolParameter("path", description="File path relative to the project root")],
    ),
    BuildToolDefinition(
        name="exec",
        description="Run a shell command in the project root and return stdout, stderr and the exit code.",
        parameters=[BuildToolParameter("command", description="Shell command to run")],
    ),
    BuildToolDefinition(
        name="done",
        description="Signal that the project is complete. Call this once, after all files are written.",
        parameters=[BuildToolParameter("summary", description="Short summary of what was built")],
        terminal=True,
    ),
]

BUILD_TOOLS: List[Dict[str, Any]] = [to_openai_tool_schema(t) for t in BUILD_TOOL_DEFINITIONS]
_DEFINITIONS: Dict[str, BuildToolDefinition] = {t.name: t for t in BUILD_TOOL_DEFINITIONS}


@dataclass
class ToolExecution:
    name: str
    output: str
    terminal: bool = False
    rejected: bool = False


class BuildToolExecutor:
    """Runs build tool calls against one sandbox and one file map.

    Model mistakes (unknown tool, bad arguments) come back as an error result
    for the model to read. Sandbox failures raise :class:`SandboxExecutionError`.
    """

    def __init__(
        self,
        sandbox: Any,
        files: Dict[str, str],
        on_file_write: Callable[[str, str], None],
        *,
        get: Callable[[Any], Any],
        exec_timeout: int = 120,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        self.sandbox = sandbox
        self.files = files
        self.on_file_write = on_file_write
        self.get = get
        self.exec_timeout = exec_timeout
        self.error_handler = error_handler or ErrorHandler()

    def execute(self, name: str, arguments: Optional[Dict[str, Any]]) -> ToolExecution:
        definition = _DEFINITIONS.get(name)
        if definition is None:
            return ToolExecution(name, self.error_handler.unknown_tool(name, _DEFINITIONS), rejected=True)
        if arguments is None:
            return ToolExecution(
                name, self.error_handler.invalid_arguments(name, "arguments are not a JSON object"), rejected=True
            )
        try:
            validate(instance=arguments, schema=definition.parameters_schema())
        except ValidationError as exc:
            return ToolExecution(name, self.error_handler.invalid_arguments(name, exc.message), rejected=True)

        handler = getattr(self, f"_tool_{name}")
        return handler(arguments)

    def _tool_write_file(self, arguments: Dict[str, Any]) -> ToolExecution:
        path = normalize_relpath(arguments["path"])
        content = arguments["content"]
        if not path:
            return ToolExecution(
                "write_file", self.error_handler.invalid_arguments("write_file", "path is empty"), rejected=True
            )
        try:
            self.get(self.sandbox.write_text.remote(path, content))
        except ValueError as exc:
            return ToolExecution("write_file", self.error_handler.invalid_arguments("write_file", str(exc)), rejected=True)
        except Exception as exc:
            raise SandboxExecutionError(f"write_file failed for {path}: {exc}") from exc
        self.files[path] = content
        self.on_file_write(path, content)
        return ToolExecution("write_file", f"Wrote {path} ({len(content.encode('utf-8'))} bytes)")

    def _tool_read_file(self, arguments: Dict[str, Any]) -> ToolExecution:
        path = normalize_relpath(arguments["path"])
        try:
            result = self.get(self.sandbox.read_text.remote(path))
        except (FileNotFoundError, IsADirectoryError):
            return ToolExecution("read_file", json.dumps({"error": f"File not found: {path}"}))
        except ValueError as exc:
            return ToolExecution("read_file", self.error_handler.invalid_arguments("read_file", str(exc)), rejected=True)
        except Exception as exc:
            raise SandboxExecutionError(f"read_file failed for {path}: {exc}") from exc
        return ToolExecution("read_file", result["content"])

    def _tool_exec(self, arguments: Dict[str, Any]) -> ToolExecution:
        command = arguments["command"]
        try:
            result = self.get(self.sandbox.run.remote(command, timeout=self.exec_timeout))
        except Exception as exc:
            raise SandboxExecutionError(f"exec failed for {command!r}: {exc}") from exc
        exit_code = result.get("exit_code")
        payload = {
            "stdout": result.get("stdout", ""),
            "stderr": result.get("stderr", ""),
            "exitCode": exit_code,
            "success": exit_code == 0,
        }
        return ToolExecution("exec", json.dumps(payload))

    def _tool_done(self, arguments: Dict[str, Any]) -> ToolExecution:
        return ToolExecution("done", str(arguments["summary"]), terminal=True)


__all__ = [
    "BUILD_TOOLS",
    "BUILD_TOOL_DEFINITIONS",
    "BuildToolExecutor",
    "ToolExecution",
    "to_openai_tool_schema",
]
