"""
Error formatting for the build loop and the session failure path
"""

import json
import logging
import traceback
from typing import Any, Dict, Optional

from ..logging_v2.run_logger import RunLogger

logger = logging.getLogger(__name__)


class ErrorHandler:
    """Formats tool-level errors for the model and records failure snapshots"""

    def __init__(self, run_logger: Optional[RunLogger] = None):
        self.run_logger = run_logger

    def unknown_tool(self, tool_name: str, available: Any) -> str:
        """Tool result for a call to a tool that is not offered"""
        return self._tool_error(
            tool_name,
            f"Unknown tool '{tool_name}'. Available tools: {', '.join(sorted(available))}",
            "unknown_tool",
        )

    def invalid_arguments(self, tool_name: str, message: str) -> str:
        """Tool result for arguments that fail the tool's schema"""
        return self._tool_error(tool_name, f"Invalid arguments for {tool_name}: {message}", "invalid_arguments")

    def _tool_error(self, tool_name: str, message: str, error_type: str) -> str:
        logger.warning(f"Tool call rejected ({error_type}): {message}")
        return json.dumps({"error": message, "function": tool_name, "error_type": error_type})

    def handle_session_error(self, error: Exception, context: Dict[str, Any]) -> Dict[str, Any]:
        """Build an error record for a failed session step and snapshot it"""
        result = {
            "error": str(error) or error.__class__.__name__,
            "error_type": error.__class__.__name__,
            "context": context,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        details = getattr(error, "details", None)
        if details:
            result["details"] = details
        self.write_error_snapshot(result)
        return result

    def write_error_snapshot(self, error_result: Dict[str, Any]) -> str:
        """Write error snapshot into the active run directory, if any"""
        if not self.run_logger or not self.run_logger.run_dir:
            return ""
        return self.run_logger.write_json("errors/error.json", error_result)
