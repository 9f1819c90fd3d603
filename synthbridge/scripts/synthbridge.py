#!/usr/bin/env python3
"""
synthbridge: CLI for the synthetic-data task bridge

Commands:
  synthbridge check                       # probe the worker interpreter
  synthbridge load FILE                   # load one table
  synthbridge analyze FILE...             # summarize tables, suggest relationships
  synthbridge synthesize FILE... --rows N # generate synthetic rows (live progress)
  synthbridge evaluate FILE... --synthetic S.json
  synthbridge plot FILE... --synthetic S.json --column NAME
  synthbridge report REPORT.json DEST.json

FILE is PATH[:TABLE]; the table name defaults to the file stem.
"""
from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from synthbridge.core.bridge import TaskBridge
from synthbridge.core.configuration import ConfigurationLoader
from synthbridge.core.models import ALGORITHMS, ProgressUpdate, TaskResult
from synthbridge.utils.logging_config import setup_logging

logger = logging.getLogger("synthbridge")

_TABLE = re.compile(r"[A-Za-z0-9_.-]+")


def parse_file_arg(value: str) -> Dict[str, Any]:
    """PATH[:TABLE] -> file descriptor dict with an absolute path."""
    path, table = value, None
    head, sep, tail = value.rpartition(":")
    # a bare drive letter ("C:") is part of the path, not a table separator
    if sep and len(head) > 1 and _TABLE.fullmatch(tail) and "/" not in tail and "\\" not in tail:
        path, table = head, tail
    p = Path(path).expanduser().resolve()
    if table is None:
        table = re.sub(r"[^A-Za-z0-9_.-]", "_", p.stem) or "table"
    size = p.stat().st_size if p.is_file() else None
    return {"path": str(p), "table_name": table, "name": p.name, "size": size}


def parse_relationship(value: str) -> Dict[str, str]:
    """PARENT.KEY=CHILD.KEY -> relationship dict."""
    parent, sep, child = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected PARENT.KEY=CHILD.KEY, got {value!r}")
    parent_table, _, parent_key = parent.rpartition(".")
    child_table, _, child_key = child.rpartition(".")
    if not (parent_table and parent_key and child_table and child_key):
        raise argparse.ArgumentTypeError(f"expected PARENT.KEY=CHILD.KEY, got {value!r}")
    return {
        "parent_table": parent_table,
        "parent_key": parent_key,
        "child_table": child_table,
        "child_key": child_key,
    }


def load_synthetic(path: str) -> Dict[str, List[Dict[str, Any]]]:
    """Synthetic rows from a JSON file: either {table: rows} or a synthesize result."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and "payload" in data:
        data = data["payload"] or {}
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    return data


def _emit(result: Dict[str, Any], out: Optional[str]) -> None:
    text = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    if out:
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        Path(out).write_text(text + "\n", encoding="utf-8")
    print(text)


def _finish(result: TaskResult, args: argparse.Namespace) -> int:
    from rich.console import Console

    console = Console(stderr=True)
    _emit(result.model_dump(mode="json"), getattr(args, "out", None))
    if result.ok:
        console.print(f"[green]ok[/] ({result.duration:.2f}s)")
        return 0
    retry = " [dim](retryable)[/]" if result.retryable else ""
    console.print(f"[red]{result.kind.value}[/]: {result.message}{retry}")
    return 1


def _bridge(args: argparse.Namespace) -> TaskBridge:
    config = ConfigurationLoader(Path(args.config) if args.config else None).load_configuration()
    return TaskBridge(config)


def cmd_check(args: argparse.Namespace) -> int:
    from rich.console import Console
    from rich.table import Table

    with _bridge(args) as bridge:
        status = bridge.check_setup()
    _emit(status.model_dump(mode="json"), args.out)
    console = Console(stderr=True)
    table = Table(title=f"Worker python {status.python_version or '?'}")
    table.add_column("package")
    table.add_column("version")
    for name, version in status.versions.items():
        table.add_row(name, version or "[red]missing[/]")
    console.print(table)
    if not status.ready:
        console.print(f"[red]not ready[/]: {status.error}")
        return 1
    return 0


def cmd_load(args: argparse.Namespace) -> int:
    with _bridge(args) as bridge:
        return _finish(bridge.load_table(parse_file_arg(args.file)), args)


def cmd_analyze(args: argparse.Namespace) -> int:
    with _bridge(args) as bridge:
        return _finish(bridge.analyze([parse_file_arg(f) for f in args.files]), args)


def cmd_synthesize(args: argparse.Namespace) -> int:
    files = [parse_file_arg(f) for f in args.files]
    with _bridge(args) as bridge:
        if not args.progress:
            result = bridge.synthesize(files, args.relationship or [], args.rows, args.algorithm)
            return _finish(result, args)

        from rich.console import Console
        from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

        progress = Progress(
            TextColumn("[bold]Synthesizing[/]"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TextColumn("{task.description}"),
            console=Console(stderr=True),
        )
        task_id = progress.add_task("starting worker...", total=100)

        def on_progress(update: ProgressUpdate) -> None:
            progress.update(task_id, completed=update.percent, description=update.message)

        with progress:
            result = bridge.synthesize(
                files, args.relationship or [], args.rows, args.algorithm, progress=on_progress
            )
            if result.ok:
                progress.update(task_id, completed=100)
    return _finish(result, args)


def cmd_evaluate(args: argparse.Namespace) -> int:
    files = [parse_file_arg(f) for f in args.files]
    synthetic = load_synthetic(args.synthetic)
    with _bridge(args) as bridge:
        return _finish(bridge.evaluate_quality(files, synthetic, args.relationship or []), args)


def cmd_plot(args: argparse.Namespace) -> int:
    files = [parse_file_arg(f) for f in args.files]
    synthetic = load_synthetic(args.synthetic)
    with _bridge(args) as bridge:
        return _finish(bridge.column_plot(files, synthetic, args.column, args.table), args)


def cmd_report(args: argparse.Namespace) -> int:
    with open(args.report, "r", encoding="utf-8") as f:
        report = json.load(f)
    destination = Path(args.destination).expanduser().resolve()
    with _bridge(args) as bridge:
        return _finish(bridge.save_report(report, destination), args)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="synthbridge", description="Task bridge for synthetic tabular data")
    parser.add_argument("--config", help="Bridge configuration YAML")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    parser.add_argument("--log-file", default=None, help="Log file (default: synthbridge_data/synthbridge.log)")
    sub = parser.add_subparsers(dest="cmd")

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--out", help="Also write the JSON result to this file")

    p_check = sub.add_parser("check", help="Check worker interpreter and toolkit packages")
    add_common(p_check)
    p_check.set_defaults(func=cmd_check)

    p_load = sub.add_parser("load", help="Load a single table")
    p_load.add_argument("file", help="PATH[:TABLE]")
    add_common(p_load)
    p_load.set_defaults(func=cmd_load)

    p_analyze = sub.add_parser("analyze", help="Analyze tables and suggest relationships")
    p_analyze.add_argument("files", nargs="+", help="PATH[:TABLE] ...")
    add_common(p_analyze)
    p_analyze.set_defaults(func=cmd_analyze)

    p_synth = sub.add_parser("synthesize", help="Generate synthetic data")
    p_synth.add_argument("files", nargs="+", help="PATH[:TABLE] ...")
    p_synth.add_argument("--rows", type=int, default=None, help="Rows to generate (default: same as source)")
    p_synth.add_argument("--algorithm", choices=list(ALGORITHMS), default="GaussianCopula")
    p_synth.add_argument("--relationship", action="append", type=parse_relationship,
                         help="PARENT.KEY=CHILD.KEY; can repeat")
    p_synth.add_argument("--no-progress", dest="progress", action="store_false", default=True,
                         help="Disable the live progress bar")
    add_common(p_synth)
    p_synth.set_defaults(func=cmd_synthesize)

    p_eval = sub.add_parser("evaluate", help="Evaluate synthetic data quality")
    p_eval.add_argument("files", nargs="+", help="PATH[:TABLE] ...")
    p_eval.add_argument("--synthetic", required=True, help="JSON file with synthetic rows")
    p_eval.add_argument("--relationship", action="append", type=parse_relationship,
                        help="PARENT.KEY=CHILD.KEY; can repeat")
    add_common(p_eval)
    p_eval.set_defaults(func=cmd_evaluate)

    p_plot = sub.add_parser("plot", help="Real vs synthetic distribution of one column")
    p_plot.add_argument("files", nargs="+", help="PATH[:TABLE] ...")
    p_plot.add_argument("--synthetic", required=True, help="JSON file with synthetic rows")
    p_plot.add_argument("--column", required=True)
    p_plot.add_argument("--table", default=None)
    add_common(p_plot)
    p_plot.set_defaults(func=cmd_plot)

    p_report = sub.add_parser("report", help="Save an evaluation report")
    p_report.add_argument("report", help="Report JSON file")
    p_report.add_argument("destination", help="Destination path")
    add_common(p_report)
    p_report.set_defaults(func=cmd_report)

    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    setup_logging(level=args.log_level, log_file=Path(args.log_file) if args.log_file else None)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
