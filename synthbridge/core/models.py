"""
Pydantic models for the task bridge (requests, results, progress).
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator


class TaskKind(str, Enum):
    SETUP_CHECK = "setup-check"
    LOAD_TABLE = "load-table"
    ANALYZE = "analyze"
    SYNTHESIZE = "synthesize"
    EVALUATE_QUALITY = "evaluate-quality"
    COLUMN_PLOT = "column-plot"
    SAVE_REPORT = "save-report"


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    LAUNCH = "LaunchError"
    TIMEOUT = "TimeoutError"
    WORKER_EXIT = "WorkerExitError"
    RESULT_PARSE = "ResultParseError"
    WORKER_REPORTED = "WorkerReportedError"
    INTERNAL = "InternalError"


RETRYABLE_ERRORS = frozenset({ErrorKind.LAUNCH, ErrorKind.TIMEOUT})

# Kinds that need at least one input file before a worker is spawned
FILE_KINDS = frozenset({
    TaskKind.LOAD_TABLE,
    TaskKind.ANALYZE,
    TaskKind.SYNTHESIZE,
    TaskKind.EVALUATE_QUALITY,
    TaskKind.COLUMN_PLOT,
})

ALGORITHMS = ("GaussianCopula", "CTGAN", "TVAE")

# quotes and every C0 control character (newline included)
_UNSAFE_PATH_CHARS = re.compile(r"[\"'\x00-\x1f\x7f]")
_TABLE_NAME = re.compile(r"[A-Za-z0-9_.-]+")
# keys the analyze result and worker error reporting share with table names
RESERVED_TABLE_NAMES = frozenset({"error", "success", "_metadata"})


def check_embeddable_path(value: str, field: str = "path") -> str:
    """Return value if it can be embedded in a worker program as a plain literal."""
    if not value or not value.strip():
        raise ValueError(f"{field} must not be empty")
    if _UNSAFE_PATH_CHARS.search(value):
        raise ValueError(f"{field} contains disallowed characters: {value!r}")
    if not Path(value).is_absolute():
        raise ValueError(f"{field} must be absolute: {value}")
    return value


class FileDescriptor(BaseModel):
    path: str
    table_name: str
    name: Optional[str] = None
    size: Optional[int] = None

    @field_validator("path")
    @classmethod
    def path_safe(cls, v: str) -> str:
        return check_embeddable_path(v)

    @field_validator("table_name")
    @classmethod
    def table_name_safe(cls, v: str) -> str:
        if not _TABLE_NAME.fullmatch(v or ""):
            raise ValueError(f"table name contains invalid characters: {v!r}")
        if v in RESERVED_TABLE_NAMES:
            raise ValueError(f"table name is reserved: {v!r}")
        return v


class Relationship(BaseModel):
    parent_table: str
    parent_key: str
    child_table: str
    child_key: str

    @model_validator(mode="after")
    def not_self(self) -> "Relationship":
        if self.parent_table == self.child_table and self.parent_key == self.child_key:
            raise ValueError("relationship must link two different columns")
        return self


# ----- per-kind configuration payloads -----

class SynthesizeConfig(BaseModel):
    relationships: List[Relationship] = Field(default_factory=list)
    num_rows: Optional[PositiveInt] = None
    algorithm: Literal["GaussianCopula", "CTGAN", "TVAE"] = "GaussianCopula"


class EvaluateConfig(BaseModel):
    synthetic_data: Dict[str, List[Dict[str, Any]]]
    relationships: List[Relationship] = Field(default_factory=list)

    @field_validator("synthetic_data")
    @classmethod
    def has_tables(cls, v: Dict[str, List[Dict[str, Any]]]) -> Dict[str, List[Dict[str, Any]]]:
        if not v:
            raise ValueError("synthetic_data must contain at least one table")
        return v


class ColumnPlotConfig(EvaluateConfig):
    column_name: str = Field(min_length=1)
    table_name: Optional[str] = None


class SaveReportConfig(BaseModel):
    report: Dict[str, Any]
    destination: str

    @field_validator("destination")
    @classmethod
    def destination_safe(cls, v: str) -> str:
        return check_embeddable_path(v, "destination")


class EmptyConfig(BaseModel):
    pass


CONFIG_MODELS: Dict[TaskKind, type] = {
    TaskKind.SETUP_CHECK: EmptyConfig,
    TaskKind.LOAD_TABLE: EmptyConfig,
    TaskKind.ANALYZE: EmptyConfig,
    TaskKind.SYNTHESIZE: SynthesizeConfig,
    TaskKind.EVALUATE_QUALITY: EvaluateConfig,
    TaskKind.COLUMN_PLOT: ColumnPlotConfig,
    TaskKind.SAVE_REPORT: SaveReportConfig,
}


class TaskRequest(BaseModel):
    kind: TaskKind
    files: List[FileDescriptor] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_files(self) -> "TaskRequest":
        if self.kind in FILE_KINDS and not self.files:
            raise ValueError(f"{self.kind.value} requires at least one input file")
        if self.kind == TaskKind.LOAD_TABLE and len(self.files) != 1:
            raise ValueError("load-table takes exactly one input file")
        names = [f.table_name for f in self.files]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate table names: {names}")
        return self

    def typed_config(self) -> BaseModel:
        """Validate the free-form payload against the model for this kind."""
        return CONFIG_MODELS[self.kind].model_validate(self.config)


class ProgressUpdate(BaseModel):
    percent: int = Field(ge=0, le=100)
    message: str = ""


class TaskResult(BaseModel):
    ok: bool
    payload: Any = None
    kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    retryable: bool = False
    diagnostics: Optional[str] = None
    duration: Optional[float] = None

    @model_validator(mode="after")
    def check_envelope(self) -> "TaskResult":
        if self.ok and self.kind is not None:
            raise ValueError("successful results carry no error kind")
        if not self.ok and self.kind is None:
            raise ValueError("failed results must carry an error kind")
        return self

    @classmethod
    def success(cls, payload: Any, duration: Optional[float] = None) -> "TaskResult":
        return cls(ok=True, payload=payload, duration=duration)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        diagnostics: Optional[str] = None,
        payload: Any = None,
        duration: Optional[float] = None,
    ) -> "TaskResult":
        return cls(
            ok=False,
            kind=kind,
            message=message,
            retryable=kind in RETRYABLE_ERRORS,
            diagnostics=diagnostics,
            payload=payload,
            duration=duration,
        )


class SetupStatus(BaseModel):
    ready: bool
    error: Optional[str] = None
    missing_capabilities: List[str] = Field(default_factory=list)
    versions: Dict[str, Optional[str]] = Field(default_factory=dict)
    python_version: Optional[str] = None
    message: str = ""

    @classmethod
    def from_result(cls, result: TaskResult) -> "SetupStatus":
        probe = result.payload if isinstance(result.payload, dict) else {}
        return cls(
            ready=result.ok and bool(probe.get("ready")),
            error=None if result.ok else result.message,
            missing_capabilities=list(probe.get("missing") or []),
            versions=dict(probe.get("packages") or {}),
            python_version=probe.get("python"),
            message=result.diagnostics or "",
        )
