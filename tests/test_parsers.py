import json

import pytest

from synthbridge.core.parsers import NoStructuredResultError, extract_result


@pytest.mark.parametrize("leading", [0, 1, 25])
@pytest.mark.parametrize("trailing", [0, 3])
def test_result_found_among_diagnostics(leading, trailing):
    result = {"success": True, "rows": 50}
    lines = [f"diagnostic line {i}" for i in range(leading)]
    lines.append(json.dumps(result))
    lines += ["{not json at all", "Done.", "  {still: broken"][:trailing]
    assert extract_result("\n".join(lines)) == result


def test_last_parseable_line_wins():
    out = '{"success": false}\nworking...\n{"success": true, "n": 2}\n'
    assert extract_result(out) == {"success": True, "n": 2}


def test_indented_and_crlf_lines():
    out = 'SDV banner\r\n   {"a": 1}   \r\n'
    assert extract_result(out) == {"a": 1}


def test_non_object_json_is_ignored():
    out = '{"x": 1}\n[1, 2, 3]\n'
    assert extract_result(out) == {"x": 1}


def test_empty_output():
    with pytest.raises(NoStructuredResultError) as exc:
        extract_result("")
    assert "no output" in str(exc.value)


def test_no_valid_json_keeps_raw_text():
    out = "Traceback...\n{broken\n"
    with pytest.raises(NoStructuredResultError) as exc:
        extract_result(out)
    assert "No valid JSON" in str(exc.value)
    assert exc.value.raw == out
