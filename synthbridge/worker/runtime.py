"""
Worker-side runtime used by generated worker programs.

Only the standard library is imported here: the setup-check program runs this
module in interpreters where the analytics toolkit may be missing.

Stdout contract: everything may print diagnostics, but the program ends with
exactly one ``emit()`` call, which writes the result as a single JSON object
line.
"""

from __future__ import annotations

import base64
import importlib
import json
import math
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional


def decode_payload(encoded: str) -> Dict[str, Any]:
    """Reverse of the bridge-side encoding: base64 -> UTF-8 JSON -> dict."""
    return json.loads(base64.b64decode(encoded.encode("ascii")).decode("utf-8"))


def json_safe(value: Any) -> Any:
    """Convert toolkit values (numpy scalars, NaN, timestamps) into plain JSON."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if value is None or isinstance(value, (str, int, bool)):
        return value
    # numpy scalars / arrays expose item() / tolist()
    if hasattr(value, "tolist"):
        return json_safe(value.tolist())
    if hasattr(value, "item"):
        return json_safe(value.item())
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def emit(result: Dict[str, Any]) -> None:
    """Print the terminal structured-result line."""
    sys.stdout.write("\n" + json.dumps(json_safe(result), ensure_ascii=True) + "\n")
    sys.stdout.flush()


def load_into(processor: Any, results: Dict[str, Any], path: str, table_name: str) -> None:
    """Load one table; record the first failure under results['error'] instead of raising."""
    try:
        outcome = processor.load_csv(path, table_name)
        if not outcome.get("success", False):
            results.setdefault("error", outcome.get("error") or f"Failed to load {path}")
    except Exception as exc:
        results.setdefault("error", f"{table_name}: {exc}")


class ProgressWriter:
    """Overwrites the progress channel file with {"percent", "message"}.

    Writes go to a sibling temp file first and are moved into place, so the
    bridge never observes a half-written object. A writer without a path is a
    no-op.
    """

    def __init__(self, path: Optional[str]):
        self.path = Path(path) if path else None

    def update(self, percent: int, message: str = "") -> None:
        if self.path is None:
            return
        percent = max(0, min(100, int(percent)))
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(json.dumps({"percent": percent, "message": str(message)}), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            # progress is advisory; the result line still decides the outcome
            print(f"progress write failed: {exc}", file=sys.stderr)

    __call__ = update


def probe_capabilities(names: Iterable[str]) -> Dict[str, Any]:
    """Import each capability, printing one probe line per package."""
    python = sys.version.split()[0]
    print("Python version:", sys.version)
    packages: Dict[str, Optional[str]] = {}
    missing = []
    for name in names:
        try:
            module = importlib.import_module(name)
        except Exception as exc:
            packages[name] = None
            missing.append(name)
            print(f"{name} not installed: {exc}")
            continue
        version = getattr(module, "__version__", None)
        packages[name] = str(version) if version is not None else "unknown"
        print(f"{name} version: {packages[name]}")
    print("Package check complete")
    return {"ready": not missing, "packages": packages, "missing": missing, "python": python}
