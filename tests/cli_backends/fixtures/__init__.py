"""CLI backends test fixtures.

Stream-json samples and stand-in CLI scripts.
"""

from tests.cli_backends.fixtures.stream_outputs import (
    ASK_USER_TOOL_USE,
    ASSISTANT_TEXT,
    ASSISTANT_WRITE_TOOL,
    CONTENT_DELTA,
    INPUT_REQUEST,
    MIXED_STREAM,
    RATE_LIMIT_ERROR,
    RESULT_SUCCESS,
    SESSION_ID,
    SYSTEM_INIT,
    USER_TOOL_RESULT,
    as_lines,
)

__all__ = [
    "ASK_USER_TOOL_USE",
    "ASSISTANT_TEXT",
    "ASSISTANT_WRITE_TOOL",
    "CONTENT_DELTA",
    "INPUT_REQUEST",
    "MIXED_STREAM",
    "RATE_LIMIT_ERROR",
    "RESULT_SUCCESS",
    "SESSION_ID",
    "SYSTEM_INIT",
    "USER_TOOL_RESULT",
    "as_lines",
]
