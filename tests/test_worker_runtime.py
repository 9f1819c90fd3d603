import json
import math

from synthbridge.core.script_builder import encode_payload
from synthbridge.worker.runtime import decode_payload, emit, json_safe, load_into, probe_capabilities


def test_payload_roundtrip_unicode():
    payload = {"q": "it's \"quoted\"\nnext", "u": "naïve café 漢字"}
    assert decode_payload(encode_payload(payload)) == payload


def test_json_safe_replaces_non_finite():
    assert json_safe({"a": math.nan, "b": [1.5, math.inf], "c": (1, 2)}) == {"a": None, "b": [1.5, None], "c": [1, 2]}


def test_emit_writes_single_object_line(capsys):
    print("chatter")
    emit({"success": True, "v": math.nan})
    lines = [l for l in capsys.readouterr().out.splitlines() if l.startswith("{")]
    assert len(lines) == 1
    assert json.loads(lines[0]) == {"success": True, "v": None}


class _Loader:
    def __init__(self, outcomes):
        self.outcomes = outcomes

    def load_csv(self, path, table_name):
        outcome = self.outcomes[table_name]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_load_into_records_first_error():
    loader = _Loader({
        "a": {"success": True},
        "b": {"success": False, "error": "File not found: /b.csv"},
        "c": OSError("disk"),
    })
    results = {}
    for table in ("a", "b", "c"):
        load_into(loader, results, f"/{table}.csv", table)
    assert results == {"error": "File not found: /b.csv"}


def test_load_into_exception_message():
    results = {}
    load_into(_Loader({"t": ValueError("bad header")}), results, "/t.csv", "t")
    assert results["error"] == "t: bad header"


def test_probe_capabilities(capsys):
    probe = probe_capabilities(["json", "synthbridge_missing_module_xyz"])
    out = capsys.readouterr().out
    assert probe["ready"] is False
    assert probe["missing"] == ["synthbridge_missing_module_xyz"]
    assert probe["packages"]["json"] is not None
    assert "Package check complete" in out
