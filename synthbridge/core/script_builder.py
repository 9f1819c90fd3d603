"""
Worker program synthesis for the task bridge.

This module renders the program text a worker interpreter executes for one
task request: a fixed preamble, one load statement per input file, the
base64-embedded configuration payload, and a terminal ``emit()`` call.

Arbitrary payload content (relationships, synthetic datasets, reports) is
never written into the program as a quoted literal. It is JSON-encoded and
then base64-encoded; the worker decodes it as its first step. Only validated
file paths and table names are embedded directly, via ``repr()``.
"""

import re
import json
import base64
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from pydantic import ValidationError

from .configuration import BridgeConfig
from .models import (
    FileDescriptor,
    TaskKind,
    TaskRequest,
    check_embeddable_path,
)

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parents[1] / "templates"

_PLACEHOLDER = re.compile(r"\{([a-z_]+)\}")


class ScriptValidationError(ValueError):
    """Raised before any process is spawned when a request cannot be rendered."""


def encode_payload(payload: Dict[str, Any]) -> str:
    """JSON-encode then base64-encode a payload for safe embedding."""
    raw = json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


class ScriptSynthesizer:
    """
    Template processor producing worker programs per operation kind.

    Templates live in ``synthbridge/templates/<kind>.py.tmpl`` and use
    ``{placeholder}`` substitution.
    """

    def __init__(self, config: BridgeConfig, template_dir: Optional[Path] = None):
        """Initialize synthesizer."""
        self.config = config
        self.template_dir = Path(template_dir) if template_dir else TEMPLATE_DIR
        module, _, cls = config.processor.partition(":")
        self.processor_module = module
        self.processor_class = cls

    def build(self, request: TaskRequest, progress_path: Optional[Path] = None) -> str:
        """
        Render the worker program for a request.

        Args:
            request: Validated task request
            progress_path: Progress channel file for this invocation, if any

        Returns:
            Program text

        Raises:
            ScriptValidationError: the request is missing required fields
        """
        kind = TaskKind(request.kind)
        payload = self._payload_for(request, progress_path)
        for fd in request.files:
            self._check_descriptor(fd)

        try:
            encoded = encode_payload(payload)
        except (TypeError, ValueError) as e:
            raise ScriptValidationError(f"Payload is not JSON-serializable: {e}") from e

        preamble = self._substitute(self._load_template("preamble"), {
            "kind": kind.value,
            "worker_paths": repr([str(p) for p in self.config.worker_paths]),
            "payload": encoded,
        })
        first = request.files[0] if request.files else None
        substitutions = {
            "preamble": preamble,
            "processor_module": self.processor_module,
            "processor_class": self.processor_class,
            "load_block": self._load_block(request.files),
            "first_path": repr(first.path) if first else "None",
            "first_table": repr(first.table_name) if first else "None",
        }
        program = self._substitute(self._load_template(kind.value), substitutions)
        logger.debug(f"Rendered {kind.value} program: {len(program)} chars, {len(request.files)} files")
        return program

    def _payload_for(self, request: TaskRequest, progress_path: Optional[Path]) -> Dict[str, Any]:
        try:
            typed = request.typed_config()
        except ValidationError as e:
            raise ScriptValidationError(f"Invalid {request.kind.value} configuration: {e}") from e
        payload = typed.model_dump(mode="json")
        payload["tables"] = [fd.table_name for fd in request.files]
        if request.kind == TaskKind.SETUP_CHECK:
            payload["capabilities"] = list(self.config.required_capabilities)
        if request.kind == TaskKind.SYNTHESIZE:
            payload["progress_path"] = str(progress_path) if progress_path else None
        if request.kind in (TaskKind.EVALUATE_QUALITY, TaskKind.COLUMN_PLOT):
            self._check_synthetic_tables(request, payload["synthetic_data"])
        return payload

    @staticmethod
    def _check_descriptor(fd: FileDescriptor) -> None:
        try:
            check_embeddable_path(fd.path)
        except ValueError as e:
            raise ScriptValidationError(str(e)) from e

    @staticmethod
    def _check_synthetic_tables(request: TaskRequest, synthetic: Dict[str, Any]) -> None:
        known = {fd.table_name for fd in request.files}
        unknown = sorted(set(synthetic) - known)
        if unknown:
            raise ScriptValidationError(f"synthetic_data references unknown tables: {', '.join(unknown)}")

    @staticmethod
    def _load_block(files: List[FileDescriptor]) -> str:
        """One load-and-register statement per input file."""
        lines = [
            f"load_into(processor, results, {fd.path!r}, {fd.table_name!r})"
            for fd in files
        ]
        return "\n".join(lines) if lines else "pass"

    def _load_template(self, name: str) -> str:
        path = self.template_dir / f"{name}.py.tmpl"
        if not path.exists():
            raise FileNotFoundError(f"Template file not found: {path}")
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _substitute(content: str, substitutions: Dict[str, str]) -> str:
        """Single-pass {key} substitution; inserted text is never re-scanned."""
        def repl(m: "re.Match[str]") -> str:
            key = m.group(1)
            return substitutions[key] if key in substitutions else m.group(0)

        return _PLACEHOLDER.sub(repl, content)
