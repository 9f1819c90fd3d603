"""
Core modules for the task bridge: request models, configuration, worker
program rendering, process supervision and result normalization.
"""

from .models import (
    TaskKind, ErrorKind, FileDescriptor, Relationship, TaskRequest,
    TaskResult, ProgressUpdate, SetupStatus
)
from .configuration import BridgeConfig, ConfigurationLoader, find_interpreter
from .script_builder import ScriptSynthesizer, ScriptValidationError
from .executor import ProcessExecutor, ExecutionOutcome
from .parsers import extract_result, NoStructuredResultError
from .progress import ProgressRelay
from .error_handler import ErrorNormalizer, ErrorPattern
from .bridge import TaskBridge

__all__ = [
    "TaskKind",
    "ErrorKind",
    "FileDescriptor",
    "Relationship",
    "TaskRequest",
    "TaskResult",
    "ProgressUpdate",
    "SetupStatus",
    "BridgeConfig",
    "ConfigurationLoader",
    "find_interpreter",
    "ScriptSynthesizer",
    "ScriptValidationError",
    "ProcessExecutor",
    "ExecutionOutcome",
    "extract_result",
    "NoStructuredResultError",
    "ProgressRelay",
    "ErrorNormalizer",
    "ErrorPattern",
    "TaskBridge",
]
