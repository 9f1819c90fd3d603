import argparse
import json
import logging
import sys
from pathlib import Path

import pytest

from synthbridge.scripts.synthbridge import load_synthetic, main, parse_file_arg, parse_relationship

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def restore_root_handlers():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


def test_parse_file_arg_with_and_without_table(tmp_path):
    f = tmp_path / "my data-1.csv"
    f.write_text("a\n1\n")
    fd = parse_file_arg(str(f))
    assert fd["path"] == str(f.resolve())
    assert fd["table_name"] == "my_data-1"
    assert fd["size"] == 4

    fd = parse_file_arg(f"{f}:people")
    assert fd["path"] == str(f.resolve())
    assert fd["table_name"] == "people"


def test_parse_relationship():
    rel = parse_relationship("customers.customer_id=orders.customer_id")
    assert rel == {
        "parent_table": "customers",
        "parent_key": "customer_id",
        "child_table": "orders",
        "child_key": "customer_id",
    }
    with pytest.raises(argparse.ArgumentTypeError):
        parse_relationship("customers.customer_id")
    with pytest.raises(argparse.ArgumentTypeError):
        parse_relationship("customers=orders.customer_id")


def test_load_synthetic_accepts_result_shapes(tmp_path):
    rows = {"t": [{"a": 1}]}
    plain = tmp_path / "plain.json"
    plain.write_text(json.dumps(rows))
    worker = tmp_path / "worker.json"
    worker.write_text(json.dumps({"success": True, "data": rows}))
    envelope = tmp_path / "envelope.json"
    envelope.write_text(json.dumps({"ok": True, "payload": {"success": True, "data": rows}}))
    for p in (plain, worker, envelope):
        assert load_synthetic(str(p)) == rows


@pytest.fixture
def cli_config(tmp_path):
    path = tmp_path / "bridge.yaml"
    path.write_text(
        "bridge:\n"
        f"  interpreter: {sys.executable}\n"
        f"  scratch_dir: {tmp_path / 'scratch'}\n"
        f"  worker_paths: [{FIXTURES}]\n"
        "  processor: fake_processor:FakeProcessor\n"
        "  progress_interval: 0.05\n"
        "  required_capabilities: [json]\n"
    )
    return path


def test_cli_analyze_and_synthesize(cli_config, csv_files, tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("SYNTHBRIDGE_PYTHON", raising=False)
    monkeypatch.delenv("SYNTHBRIDGE_SCRATCH_DIR", raising=False)
    log = tmp_path / "logs" / "cli.log"
    files = [f"{f['path']}:{f['table_name']}" for f in csv_files]

    rc = main(["--config", str(cli_config), "--log-file", str(log), "analyze", *files])
    assert rc == 0
    result = json.loads(capsys.readouterr().out)
    assert result["ok"] is True
    assert result["payload"]["orders"]["rows"] == 20

    out = tmp_path / "synthetic.json"
    rc = main(["--config", str(cli_config), "--log-file", str(log),
               "synthesize", files[0], "--rows", "7", "--out", str(out)])
    assert rc == 0
    assert len(load_synthetic(str(out))["customers"]) == 7
    assert log.exists()


def test_cli_failure_exit_code(cli_config, csv_files, tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("SYNTHBRIDGE_PYTHON", raising=False)
    synthetic = tmp_path / "s.json"
    synthetic.write_text(json.dumps({"customers": [{"age": 1}]}))
    rc = main(["--config", str(cli_config), "--log-file", str(tmp_path / "l.log"),
               "plot", f"{csv_files[0]['path']}:customers", "--synthetic", str(synthetic),
               "--column", "missing"])
    assert rc == 1
    result = json.loads(capsys.readouterr().out)
    assert result["kind"] == "WorkerReportedError"


def test_cli_without_command_prints_help(capsys):
    assert main([]) == 1
