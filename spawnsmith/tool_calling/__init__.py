from .text_tool_calls import (
    MatchedToolCall,
    ParseOutcome,
    TextToolCallExtraction,
    UnparseableCandidate,
    extract_text_tool_calls,
)

__all__ = [
    "MatchedToolCall",
    "ParseOutcome",
    "TextToolCallExtraction",
    "UnparseableCandidate",
    "extract_text_tool_calls",
]
