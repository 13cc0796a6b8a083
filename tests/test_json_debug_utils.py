import json
import tempfile

from utils.json_debug_utils import (
    analyze_json_structure,
    find_json_error_location,
    save_problematic_json,
    suggest_json_fixes,
)
from utils.json_errors import StrategyFailure


def test_analysis_of_truncated_text():
    diagnostics = analyze_json_structure('{"cells": [{"a": "b')

    assert diagnostics.brace_balance == 2
    assert diagnostics.bracket_balance == 1
    assert diagnostics.unclosed_string
    assert diagnostics.unmatched_quotes
    assert diagnostics.missing_closers
    assert "Unclosed string at end of JSON" in diagnostics.common_issues


def test_analysis_of_quoting_and_commas():
    diagnostics = analyze_json_structure("{'a': [1, 2,], \"b\": \"say \\\"hi\\\"\"}")

    assert diagnostics.single_quotes
    assert diagnostics.escaped_quotes
    assert diagnostics.trailing_commas == 1
    assert not diagnostics.unmatched_quotes
    assert diagnostics.brace_balance == 0


def test_error_location():
    text = '{"a": 1\n "b": 2}'
    location = find_json_error_location(text, "Expecting ',' delimiter: line 2 column 2 (char 9)")

    assert location["line_number"] == 2
    assert location["char_position"] == 9
    assert location["problematic_line"] == ' "b": 2}'
    assert location["error_char"] == '"'


def test_suggestions_follow_diagnostics():
    suggestions = suggest_json_fixes(analyze_json_structure('{"a": [1, 2'), "Expecting ',' delimiter: line 1 column 12 (char 11)")

    assert suggestions[0] == "Add missing comma between JSON elements"
    assert "Add 1 closing braces '}'" in suggestions
    assert "Add 1 closing brackets ']'" in suggestions


def test_save_problematic_json(monkeypatch, tmp_path):
    monkeypatch.setattr(tempfile, "gettempdir", lambda: str(tmp_path))
    failure = StrategyFailure(1, "direct_parse", "Expecting value", position=6)
    path = save_problematic_json('{"a": ', "Expecting value", context="test",
                                 diagnostics=analyze_json_structure('{"a": '), failures=[failure.to_dict()])

    with open(path, encoding="utf-8") as f:
        saved = json.load(f)
    assert saved["context"] == "test"
    assert saved["full_response"] == '{"a": '
    assert saved["diagnostics"]["brace_balance"] == 1
    assert saved["failures"] == [
        {"strategy_index": 1, "strategy_name": "direct_parse", "message": "Expecting value", "position": 6}
    ]


def test_save_problematic_json_without_failures(monkeypatch, tmp_path):
    monkeypatch.setattr(tempfile, "gettempdir", lambda: str(tmp_path))
    path = save_problematic_json("not json", "Expecting value")

    with open(path, encoding="utf-8") as f:
        saved = json.load(f)
    assert saved["failures"] == []
    assert saved["diagnostics"] is None
