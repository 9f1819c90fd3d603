"""
Configuration management for the task bridge.

This module handles loading and validation of the YAML bridge configuration:
worker interpreter, per-operation timeouts, progress polling cadence,
scratch directory and the worker-side processor entry point.
"""

import yaml
import logging
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from .models import TaskKind

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUTS: Dict[str, float] = {
    TaskKind.SETUP_CHECK.value: 10.0,
    TaskKind.LOAD_TABLE.value: 15.0,
    TaskKind.ANALYZE.value: 30.0,
    TaskKind.SYNTHESIZE.value: 600.0,
    TaskKind.EVALUATE_QUALITY.value: 45.0,
    TaskKind.COLUMN_PLOT.value: 120.0,
    TaskKind.SAVE_REPORT.value: 30.0,
}

DEFAULT_CAPABILITIES = ["sdv", "pandas", "numpy"]
DEFAULT_PROCESSOR = "synthbridge.worker.processor:DataProcessor"

# Directory that holds the synthbridge package; the worker needs it on sys.path
PACKAGE_ROOT = Path(__file__).resolve().parents[2]

_PROCESSOR_REF = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*:[A-Za-z_][A-Za-z0-9_]*")


def _bundled_interpreter_candidates(app_root: Optional[Path] = None) -> List[Path]:
    roots = [app_root] if app_root else []
    roots += [PACKAGE_ROOT, Path.cwd()]
    names = ["python3.10", "python3", "python"]
    return [Path(r) / "python" / "bin" / n for r in roots for n in names]


def find_interpreter(app_root: Optional[Path] = None) -> str:
    """Locate the worker interpreter.

    Priority: SYNTHBRIDGE_PYTHON -> bundled python/bin/python3* -> current interpreter.
    """
    env = os.environ.get("SYNTHBRIDGE_PYTHON")
    if env:
        return env
    for candidate in _bundled_interpreter_candidates(app_root):
        logger.debug(f"Checking interpreter candidate: {candidate}")
        if candidate.is_file() and os.access(candidate, os.X_OK):
            logger.info(f"Found bundled interpreter at: {candidate}")
            return str(candidate)
    return sys.executable


@dataclass
class BridgeConfig:
    """Complete bridge configuration, built once and passed to TaskBridge."""
    interpreter: str = field(default_factory=find_interpreter)
    timeouts: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))
    progress_interval: float = 1.0
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "synthbridge")
    required_capabilities: List[str] = field(default_factory=lambda: list(DEFAULT_CAPABILITIES))
    worker_paths: List[str] = field(default_factory=lambda: [str(PACKAGE_ROOT)])
    processor: str = DEFAULT_PROCESSOR
    env: Dict[str, str] = field(default_factory=dict)
    max_workers: int = 4

    def __post_init__(self):
        self.scratch_dir = Path(self.scratch_dir)
        merged = dict(DEFAULT_TIMEOUTS)
        merged.update({str(k): float(v) for k, v in (self.timeouts or {}).items()})
        self.timeouts = merged
        self.env = {str(k): str(v) for k, v in (self.env or {}).items()}
        validate_config(self)

    def timeout_for(self, kind: TaskKind) -> float:
        """Deadline in seconds for one invocation of the given kind."""
        return self.timeouts[TaskKind(kind).value]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BridgeConfig':
        """Create BridgeConfig from dictionary; unspecified keys keep defaults."""
        kwargs: Dict[str, Any] = {}
        for key in ("interpreter", "timeouts", "progress_interval", "scratch_dir",
                    "required_capabilities", "worker_paths", "processor", "env", "max_workers"):
            if data.get(key) is not None:
                kwargs[key] = data[key]
        if "worker_paths" in kwargs:
            # package root always stays importable for the worker runtime
            paths = [str(p) for p in kwargs["worker_paths"]]
            if str(PACKAGE_ROOT) not in paths:
                paths.append(str(PACKAGE_ROOT))
            kwargs["worker_paths"] = paths
        return cls(**kwargs)


def validate_config(config: BridgeConfig) -> None:
    """Validate configuration values, raising ValueError on the first problem."""
    known = {k.value for k in TaskKind}
    for kind, seconds in config.timeouts.items():
        if kind not in known:
            raise ValueError(f"Unknown operation kind in timeouts: {kind}")
        if seconds <= 0:
            raise ValueError(f"Timeout for {kind} must be positive")
    if config.progress_interval <= 0:
        raise ValueError("progress_interval must be positive")
    if config.max_workers <= 0:
        raise ValueError("max_workers must be positive")
    if not _PROCESSOR_REF.fullmatch(config.processor or ""):
        raise ValueError(f"processor must look like 'package.module:Class': {config.processor!r}")
    for cap in config.required_capabilities:
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_.]*", cap):
            raise ValueError(f"Invalid capability name: {cap!r}")
    for p in config.worker_paths:
        if re.search(r"[\"'\x00-\x1f\x7f]", p):
            raise ValueError(f"worker path contains disallowed characters: {p!r}")


class ConfigurationLoader:
    """YAML configuration file loader for the bridge."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else None

    def load_configuration(self) -> BridgeConfig:
        """Load YAML (if any), apply environment overrides and validate."""
        raw: Dict[str, Any] = {}
        if self.config_path is not None:
            logger.info(f"Loading bridge configuration from {self.config_path}")
            with open(self.config_path, 'r') as f:
                raw = yaml.safe_load(f) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Bridge configuration must be a mapping: {self.config_path}")
            raw = raw.get("bridge", raw)

        env_python = os.environ.get("SYNTHBRIDGE_PYTHON")
        if env_python:
            raw["interpreter"] = env_python
        env_scratch = os.environ.get("SYNTHBRIDGE_SCRATCH_DIR")
        if env_scratch:
            raw["scratch_dir"] = env_scratch

        config = BridgeConfig.from_dict(raw)
        logger.info(f"Bridge configuration loaded: interpreter={config.interpreter}")
        return config
