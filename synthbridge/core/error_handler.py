"""
Result normalization and error classification.

Every executor and parser outcome ends here and leaves as a TaskResult; no
failure is propagated to the caller as an exception. Failed worker stderr is
matched against a small table of known patterns so the message can carry a
concrete hint.
"""

import re
import logging
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field

from .executor import ExecutionOutcome
from .models import ErrorKind, TaskKind, TaskResult
from .parsers import NoStructuredResultError, extract_result

logger = logging.getLogger(__name__)

# tail of stderr kept in diagnostics
STDERR_TAIL = 4000

OPERATION_LABELS: Dict[TaskKind, str] = {
    TaskKind.SETUP_CHECK: "Python setup check",
    TaskKind.LOAD_TABLE: "CSV load",
    TaskKind.ANALYZE: "Data analysis",
    TaskKind.SYNTHESIZE: "Synthetic data generation",
    TaskKind.EVALUATE_QUALITY: "Quality evaluation",
    TaskKind.COLUMN_PLOT: "Column plot generation",
    TaskKind.SAVE_REPORT: "Report save",
}


@dataclass
class ErrorPattern:
    """Error pattern for stderr classification."""
    name: str
    patterns: List[str]
    description: str
    suggestions: List[str] = field(default_factory=list)


DEFAULT_PATTERNS = [
    ErrorPattern(
        name="missing_module",
        patterns=[r"ModuleNotFoundError: No module named '([^']+)'", r"ImportError: (.+)"],
        description="A required package is not installed in the worker interpreter",
        suggestions=["Run the setup check and install the missing packages"],
    ),
    ErrorPattern(
        name="memory",
        patterns=[r"MemoryError", r"Unable to allocate", r"Killed"],
        description="The worker ran out of memory",
        suggestions=["Reduce the number of rows or tables"],
    ),
    ErrorPattern(
        name="file_not_found",
        patterns=[r"FileNotFoundError: (.+)", r"No such file or directory"],
        description="An input file could not be found",
        suggestions=["Check that the selected files still exist"],
    ),
    ErrorPattern(
        name="permission",
        patterns=[r"PermissionError: (.+)", r"Permission denied"],
        description="The worker was denied access to a file",
        suggestions=["Check file permissions of inputs and destination"],
    ),
]


class ErrorNormalizer:
    """
    Maps execution outcomes to the uniform TaskResult envelope.
    """

    def __init__(self, patterns: Optional[List[ErrorPattern]] = None):
        self.error_patterns = patterns if patterns is not None else list(DEFAULT_PATTERNS)

    def normalize(self, kind: TaskKind, outcome: ExecutionOutcome) -> TaskResult:
        """
        Convert one execution outcome into a TaskResult.

        Args:
            kind: Operation kind of the request
            outcome: Result of ProcessExecutor.run

        Returns:
            TaskResult (ok or classified failure)
        """
        label = OPERATION_LABELS[kind]
        duration = outcome.duration

        if outcome.status == "launch_failed":
            return TaskResult.failure(
                ErrorKind.LAUNCH, outcome.error or f"{label} could not start", duration=duration
            )

        if outcome.status == "timeout":
            return TaskResult.failure(
                ErrorKind.TIMEOUT,
                f"{label} timed out after {outcome.timeout:g} seconds",
                duration=duration,
            )

        if outcome.returncode != 0:
            logger.warning(f"{label} worker exited rc={outcome.returncode}; stderr: {_tail(outcome.stderr, 500)}")
            message = f"{label} failed: worker exited with code {outcome.returncode}"
            hint = self.classify(outcome.stderr)
            if hint:
                message += f" ({hint})"
            return TaskResult.failure(
                ErrorKind.WORKER_EXIT, message, diagnostics=_tail(outcome.stderr), duration=duration
            )

        if outcome.stderr:
            logger.debug(f"{label} worker stderr: {_tail(outcome.stderr, 2000)}")

        try:
            value = extract_result(outcome.stdout)
        except NoStructuredResultError as e:
            logger.error(f"{label}: {e}; raw output: {_tail(e.raw, 500)}")
            return TaskResult.failure(
                ErrorKind.RESULT_PARSE, f"{label}: {e}", diagnostics=e.raw, duration=duration
            )

        reported = self.reported_error(kind, value)
        if reported is not None:
            return TaskResult.failure(
                ErrorKind.WORKER_REPORTED,
                f"{label} failed: {reported}",
                payload=value,
                diagnostics=_tail(outcome.stderr) or None,
                duration=duration,
            )
        return TaskResult.success(value, duration=duration)

    @staticmethod
    def reported_error(kind: TaskKind, value: Dict[str, Any]) -> Optional[str]:
        """Return the failure message a worker put into its own result, if any."""
        if kind == TaskKind.SETUP_CHECK:
            if value.get("ready"):
                return None
            missing = value.get("missing") or []
            return f"missing packages: {', '.join(missing)}" if missing else "worker not ready"
        if value.get("success") is False or value.get("error"):
            return str(value.get("error") or "worker reported failure")
        return None

    def classify(self, stderr: str) -> Optional[str]:
        """Match stderr against known patterns; return a short hint or None."""
        if not stderr:
            return None
        for pattern in self.error_patterns:
            for rx in pattern.patterns:
                m = re.search(rx, stderr)
                if m:
                    detail = m.group(1) if m.groups() else ""
                    hint = pattern.description + (f": {detail}" if detail else "")
                    if pattern.suggestions:
                        hint += f". {pattern.suggestions[0]}"
                    return hint
        return None


def _tail(text: str, limit: int = STDERR_TAIL) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else "..." + text[-limit:]
