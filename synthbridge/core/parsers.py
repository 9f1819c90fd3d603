"""
Worker output parsing.

The worker's stdout is not guaranteed to contain only the result: toolkit
banners, progress bars and debug prints may interleave. The result is the
last line that starts with ``{`` and parses as a JSON object.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Optional

RESULT_DELIMITER = "{"
# cap on raw text attached to parse errors
RAW_TEXT_LIMIT = 20000


class NoStructuredResultError(ValueError):
    """No line of worker stdout parsed as a structured result."""

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def _candidate_lines(text: str) -> Iterator[str]:
    """Yield trimmed, delimiter-prefixed lines from last to first."""
    for line in reversed(text.splitlines()):
        s = line.strip()
        if s.startswith(RESULT_DELIMITER):
            yield s


def _parse_object(line: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(line)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def extract_result(stdout: str) -> Dict[str, Any]:
    """Return the last structured-result object found in worker stdout.

    Raises NoStructuredResultError (carrying the raw text) when nothing parses.
    """
    text = stdout or ""
    for line in _candidate_lines(text):
        value = _parse_object(line)
        if value is not None:
            return value
    raw = text if len(text) <= RAW_TEXT_LIMIT else "..." + text[-RAW_TEXT_LIMIT:]
    if not text.strip():
        raise NoStructuredResultError("Worker produced no output", raw)
    raise NoStructuredResultError("No valid JSON result found in worker output", raw)
