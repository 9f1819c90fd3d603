import json
import os
import sys

import pytest

from synthbridge.core.bridge import TaskBridge
from synthbridge.core.models import ErrorKind, Relationship, TaskKind, TaskRequest


def test_check_setup_ready(fake_config):
    status = TaskBridge(fake_config()).check_setup()
    assert status.ready
    assert set(status.versions) == {"json", "csv"}
    assert status.python_version == sys.version.split()[0]


def test_check_setup_reports_missing_capability(fake_config):
    bridge = TaskBridge(fake_config(required_capabilities=["json", "synthbridge_absent_pkg"]))
    status = bridge.check_setup()
    assert not status.ready
    assert status.missing_capabilities == ["synthbridge_absent_pkg"]
    assert status.versions["synthbridge_absent_pkg"] is None


def test_check_setup_missing_interpreter(fake_config, tmp_path):
    status = TaskBridge(fake_config(interpreter=str(tmp_path / "nope" / "python3"))).check_setup()
    assert not status.ready
    assert "does not exist" in status.error


def test_load_table(fake_config, csv_files):
    res = TaskBridge(fake_config()).load_table(csv_files[0])
    assert res.ok
    assert res.payload["rows"] == 10
    assert res.payload["columns"] == ["customer_id", "name", "age"]


def test_analyze_two_files(fake_config, csv_files):
    res = TaskBridge(fake_config()).analyze(csv_files)
    assert res.ok, res.message
    assert res.payload["customers"]["rows"] == 10
    assert res.payload["orders"]["rows"] == 20
    assert res.payload["orders"]["columns"] == ["order_id", "customer_id", "amount"]
    assert res.duration is not None and res.duration > 0


def test_analyze_is_not_cached(fake_config, csv_files):
    bridge = TaskBridge(fake_config())
    first = bridge.analyze(csv_files)
    second = bridge.analyze(csv_files)
    assert first.ok and second.ok
    assert first.payload == second.payload


def test_analyze_missing_file_is_reported(fake_config, tmp_path):
    res = TaskBridge(fake_config()).analyze([{"path": str(tmp_path / "gone.csv"), "table_name": "gone"}])
    assert res.kind == ErrorKind.WORKER_REPORTED
    assert "File not found" in res.message


def test_synthesize_rows_and_progress(fake_config, csv_files):
    cfg = fake_config(env={"FAKE_STEP_DELAY": "0.2"})
    updates = []
    res = TaskBridge(cfg).synthesize(csv_files[:1], num_rows=50, progress=updates.append)
    assert res.ok, res.message
    assert list(res.payload["data"]) == ["customers"]
    assert len(res.payload["data"]["customers"]) == 50
    assert updates, "no progress observed"
    percents = [u.percent for u in updates]
    assert percents == sorted(percents)
    assert all(a != b for a, b in zip(updates, updates[1:]))
    assert percents[-1] == 100
    assert list(cfg.scratch_dir.glob("progress_*")) == []


def test_synthesize_with_relationships(fake_config, csv_files):
    rel = Relationship(parent_table="customers", parent_key="customer_id",
                       child_table="orders", child_key="customer_id")
    res = TaskBridge(fake_config()).synthesize(csv_files, [rel], algorithm="TVAE")
    assert res.ok
    assert len(res.payload["data"]["orders"]) == 20
    assert res.payload["generation_info"]["algorithm"] == "TVAE"


@pytest.mark.skipif(os.name != "posix", reason="process liveness probe is POSIX-only")
def test_synthesize_timeout_kills_worker_and_cleans_scratch(fake_config, csv_files, tmp_path):
    pid_file = tmp_path / "worker.pid"
    cfg = fake_config(timeouts={"synthesize": 2}, env={"FAKE_SLEEP": "60", "FAKE_PID_FILE": str(pid_file)})
    updates = []
    res = TaskBridge(cfg).synthesize(csv_files[:1], num_rows=10, progress=updates.append)
    assert res.kind == ErrorKind.TIMEOUT
    assert res.retryable
    assert "timed out after 2 seconds" in res.message
    assert list(cfg.scratch_dir.glob("progress_*")) == []
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_worker_crash_is_worker_exit(fake_config, csv_files):
    res = TaskBridge(fake_config(env={"FAKE_CRASH": "1"})).synthesize(csv_files[:1])
    assert res.kind == ErrorKind.WORKER_EXIT
    assert "code 3" in res.message
    assert "MemoryError" in res.diagnostics


def test_missing_result_line_is_parse_error(fake_config, csv_files):
    res = TaskBridge(fake_config(env={"FAKE_NO_RESULT": "1"})).synthesize(csv_files[:1])
    assert res.kind == ErrorKind.RESULT_PARSE
    assert "{broken json" in res.diagnostics


def test_evaluate_quality(fake_config, csv_files):
    synthetic = {"customers": [{"customer_id": 1, "name": "x", "age": 30}]}
    res = TaskBridge(fake_config()).evaluate_quality(csv_files, synthetic)
    assert res.ok
    assert res.payload["quality_score"] == 0.9
    assert res.payload["tables_evaluated"] == ["customers"]


def test_column_plot_absent_column(fake_config, csv_files):
    synthetic = {"customers": [{"customer_id": 1, "name": "x", "age": 30}]}
    res = TaskBridge(fake_config()).column_plot(csv_files, synthetic, "no_such_column")
    assert not res.ok
    assert res.kind in (ErrorKind.WORKER_REPORTED, ErrorKind.RESULT_PARSE)
    assert "no_such_column" in res.message


def test_column_plot_present_column(fake_config, csv_files):
    synthetic = {"customers": [{"customer_id": 1, "name": "x", "age": 30}]}
    res = TaskBridge(fake_config()).column_plot(csv_files, synthetic, "age")
    assert res.ok
    assert res.payload["table_name"] == "customers"


def test_save_report_roundtrip(fake_config, tmp_path):
    report = {"title": 'Quality "report"\nfor été', "score": 0.87, "tags": ["a'b", "東京"]}
    destination = tmp_path / "out dir" / "report.json"
    res = TaskBridge(fake_config()).save_report(report, destination)
    assert res.ok, res.message
    assert json.loads(destination.read_text(encoding="utf-8")) == report


@pytest.mark.parametrize("kwargs", [
    {"num_rows": 0},
    {"num_rows": -1},
    {"algorithm": "Magic"},
])
def test_synthesize_validation_spawns_nothing(fake_config, csv_files, tmp_path, kwargs):
    # a missing interpreter would yield LaunchError if anything were spawned
    bridge = TaskBridge(fake_config(interpreter=str(tmp_path / "missing-python")))
    res = bridge.synthesize(csv_files, **kwargs)
    assert res.kind == ErrorKind.VALIDATION
    assert not res.retryable


def test_invalid_file_descriptors_are_validation_errors(fake_config):
    bridge = TaskBridge(fake_config())
    assert bridge.analyze([]).kind == ErrorKind.VALIDATION
    assert bridge.analyze([{"path": "relative.csv", "table_name": "t"}]).kind == ErrorKind.VALIDATION
    assert bridge.analyze([{"path": "/tmp/x'.csv", "table_name": "t"}]).kind == ErrorKind.VALIDATION
    assert bridge.save_report({"a": 1}, "relative/out.json").kind == ErrorKind.VALIDATION


@pytest.mark.parametrize("name", ["error", "success", "_metadata"])
def test_reserved_table_names_are_rejected_before_spawning(fake_config, csv_files, tmp_path, name):
    bridge = TaskBridge(fake_config(interpreter=str(tmp_path / "missing-python")))
    res = bridge.analyze([dict(csv_files[0], table_name=name)])
    assert res.ok is False
    assert res.kind == ErrorKind.VALIDATION
    assert "reserved" in res.message


def test_analyze_keeps_table_names_next_to_reserved_keys(fake_config, csv_files):
    files = [dict(csv_files[0], table_name="errors"), dict(csv_files[1], table_name="metadata")]
    res = TaskBridge(fake_config()).analyze(files)
    assert res.ok, res.message
    assert res.payload["errors"]["rows"] == 10
    assert res.payload["metadata"]["rows"] == 20
    assert "_metadata" in res.payload


def test_unknown_synthetic_table_is_validation_error(fake_config, csv_files):
    res = TaskBridge(fake_config()).evaluate_quality(csv_files, {"ghost": [{"a": 1}]})
    assert res.kind == ErrorKind.VALIDATION


def test_submit_runs_concurrently(fake_config, csv_files):
    with TaskBridge(fake_config(max_workers=2)) as bridge:
        futures = [
            bridge.submit(TaskRequest(kind=TaskKind.ANALYZE, files=csv_files)),
            bridge.submit({"kind": "load-table", "files": csv_files[1:]}),
            bridge.submit({"kind": "analyze", "files": []}),
        ]
        results = [f.result(timeout=60) for f in futures]
    assert results[0].ok and results[1].ok
    assert results[1].payload["rows"] == 20
    assert results[2].kind == ErrorKind.VALIDATION
