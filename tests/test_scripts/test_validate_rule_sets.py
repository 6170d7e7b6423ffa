"""Tests for the rule-set validation CLI."""

import json

from scripts.validate_rule_sets import collect_files, main


def test_bundled_rule_sets_pass(capsys):
    assert main([]) == 0
    out = capsys.readouterr().out
    assert "twitter.json" in out
    assert "All rule sets are valid." in out


def test_invalid_rule_set_fails(tmp_path, capsys):
    path = tmp_path / "bad.json"
    path.write_text(
        json.dumps(
            {
                "id": "bad",
                "containerRules": [{"id": "c", "type": "css", "selector": "div[", "score": 1}],
                "fieldRules": [],
            }
        )
    )
    assert main([str(path)]) == 1
    out = capsys.readouterr().out
    assert "FAIL: configuration has errors" in out
    assert "bad.json: 2 error(s)" in out


def test_unparseable_and_missing_files_fail(tmp_path, capsys):
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    assert main([str(broken), str(tmp_path / "absent.json")]) == 1
    out = capsys.readouterr().out
    assert "Invalid JSON" in out
    assert "File not found" in out


def test_collect_files_expands_directories(tmp_path):
    (tmp_path / "b.json").write_text("{}")
    (tmp_path / "a.json").write_text("{}")
    (tmp_path / "readme.md").write_text("")
    assert [p.name for p in collect_files([str(tmp_path)])] == ["a.json", "b.json"]


def test_empty_directory(tmp_path, capsys):
    assert main([str(tmp_path)]) == 1
    assert "No rule-set files found." in capsys.readouterr().out
