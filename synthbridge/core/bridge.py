"""
Task bridge facade.

One method per operation kind. Each call renders a worker program, runs it in
a fresh interpreter under the kind's deadline and returns a TaskResult; the
progress channel of a synthesize call lives exactly as long as the call.
"""

from __future__ import annotations

import time
import logging
import threading
from contextlib import nullcontext
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from .configuration import BridgeConfig
from .error_handler import ErrorNormalizer, OPERATION_LABELS
from .executor import ProcessExecutor
from .models import (
    ErrorKind,
    FileDescriptor,
    Relationship,
    SetupStatus,
    TaskKind,
    TaskRequest,
    TaskResult,
)
from .progress import ProgressRelay, ProgressSink, channel_path
from .script_builder import ScriptSynthesizer, ScriptValidationError

logger = logging.getLogger(__name__)

FileLike = Union[FileDescriptor, Mapping[str, Any]]
RelationshipLike = Union[Relationship, Mapping[str, Any]]


class TaskBridge:
    """
    Runs task requests against the external analytics toolkit.

    The bridge holds no per-task state; concurrent calls only share the
    scratch directory and the pool used by submit().
    """

    def __init__(self, config: Optional[BridgeConfig] = None):
        self.config = config or BridgeConfig()
        self.synthesizer = ScriptSynthesizer(self.config)
        self.executor = ProcessExecutor(self.config.interpreter, env=dict(self.config.env))
        self.normalizer = ErrorNormalizer()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()

    def __enter__(self) -> "TaskBridge":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Wait for submitted tasks and release the pool."""
        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=True)

    # ----- core -----

    def execute(
        self,
        request: Union[TaskRequest, Mapping[str, Any]],
        progress: Optional[ProgressSink] = None,
    ) -> TaskResult:
        """
        Run one request to completion. Never raises for task failures.

        Args:
            request: TaskRequest or its dict form
            progress: Optional sink for ProgressUpdate (synthesize only)

        Returns:
            TaskResult with duration recorded
        """
        started = time.monotonic()
        try:
            result = self._execute(request, progress)
        except (ScriptValidationError, ValidationError) as e:
            logger.warning(f"Rejected task request: {e}")
            result = TaskResult.failure(ErrorKind.VALIDATION, str(e))
        except Exception as e:
            logger.exception("Unexpected bridge failure")
            result = TaskResult.failure(ErrorKind.INTERNAL, f"{type(e).__name__}: {e}")
        return result.model_copy(update={"duration": time.monotonic() - started})

    def _execute(self, request: Union[TaskRequest, Mapping[str, Any]],
                 progress: Optional[ProgressSink]) -> TaskResult:
        if not isinstance(request, TaskRequest):
            request = TaskRequest.model_validate(request)
        kind = request.kind
        label = OPERATION_LABELS[kind]

        progress_path: Optional[Path] = None
        if kind == TaskKind.SYNTHESIZE and progress is not None:
            progress_path = channel_path(self.config.scratch_dir)

        # render before anything touches disk: a rejected request spawns nothing
        program = self.synthesizer.build(request, progress_path)
        timeout = self.config.timeout_for(kind)
        logger.info(f"{label}: starting worker ({len(request.files)} files, timeout {timeout:g}s)")

        relay = (ProgressRelay(progress_path, progress, self.config.progress_interval)
                 if progress_path is not None else nullcontext())
        with relay:
            outcome = self.executor.run(program, timeout)

        result = self.normalizer.normalize(kind, outcome)
        if result.ok:
            logger.info(f"{label}: completed in {outcome.duration:.2f}s")
        else:
            logger.warning(f"{label}: {result.kind.value}: {result.message}")
        return result

    def submit(
        self,
        request: Union[TaskRequest, Mapping[str, Any]],
        progress: Optional[ProgressSink] = None,
    ) -> "Future[TaskResult]":
        """Run execute() on the bridge pool; the future always resolves to a TaskResult."""
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self.config.max_workers, thread_name_prefix="synthbridge"
                )
            return self._pool.submit(self.execute, request, progress)

    # ----- one method per operation -----

    def check_setup(self) -> SetupStatus:
        """Probe the worker interpreter for the required capabilities."""
        result = self.execute({"kind": TaskKind.SETUP_CHECK})
        status = SetupStatus.from_result(result)
        if status.ready:
            logger.info(f"Worker ready: python {status.python_version}, {status.versions}")
        return status

    def load_table(self, file: FileLike) -> TaskResult:
        return self.execute({"kind": TaskKind.LOAD_TABLE, "files": [file]})

    def analyze(self, files: Iterable[FileLike]) -> TaskResult:
        return self.execute({"kind": TaskKind.ANALYZE, "files": list(files)})

    def synthesize(
        self,
        files: Iterable[FileLike],
        relationships: Iterable[RelationshipLike] = (),
        num_rows: Optional[int] = None,
        algorithm: str = "GaussianCopula",
        progress: Optional[ProgressSink] = None,
    ) -> TaskResult:
        config = {
            "relationships": list(relationships),
            "num_rows": num_rows,
            "algorithm": algorithm,
        }
        return self.execute(
            {"kind": TaskKind.SYNTHESIZE, "files": list(files), "config": config}, progress
        )

    def evaluate_quality(
        self,
        files: Iterable[FileLike],
        synthetic_data: Dict[str, List[Dict[str, Any]]],
        relationships: Iterable[RelationshipLike] = (),
    ) -> TaskResult:
        config = {
            "synthetic_data": synthetic_data,
            "relationships": list(relationships),
        }
        return self.execute({"kind": TaskKind.EVALUATE_QUALITY, "files": list(files), "config": config})

    def column_plot(
        self,
        files: Iterable[FileLike],
        synthetic_data: Dict[str, List[Dict[str, Any]]],
        column_name: str,
        table_name: Optional[str] = None,
    ) -> TaskResult:
        config = {
            "synthetic_data": synthetic_data,
            "column_name": column_name,
            "table_name": table_name,
        }
        return self.execute({"kind": TaskKind.COLUMN_PLOT, "files": list(files), "config": config})

    def save_report(self, report: Dict[str, Any], destination: Union[str, Path]) -> TaskResult:
        config = {"report": report, "destination": str(destination)}
        return self.execute({"kind": TaskKind.SAVE_REPORT, "config": config})

