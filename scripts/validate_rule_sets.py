#!/usr/bin/env python3
"""Validate rule-set JSON files. Used in CI before rule changes ship.

Usage: validate_rule_sets.py [PATH ...]

Each PATH is a rule-set file or a directory of them; defaults to the
bundled ``rulesets/`` directory. Exits non-zero if any rule set has errors.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

from admirror.config.settings import configure_logging
from admirror.rules.config_validator import (
    ConfigValidationResult,
    format_validation_result,
    validate_rule_set,
)

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_RULESETS_DIR = ROOT / "rulesets"


def collect_files(args: list[str]) -> list[Path]:
    targets = [Path(arg) for arg in args] or [DEFAULT_RULESETS_DIR]
    files: list[Path] = []
    for target in targets:
        if target.is_dir():
            files.extend(sorted(target.glob("*.json")))
        else:
            files.append(target)
    return files


def validate_file(path: Path) -> ConfigValidationResult:
    result = ConfigValidationResult()
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        result.error("File not found")
        return result
    except json.JSONDecodeError as e:
        result.error(f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})")
        return result
    return validate_rule_set(document)


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    files = collect_files(sys.argv[1:] if argv is None else argv)
    if not files:
        print("No rule-set files found.")
        return 1

    failures: list[str] = []
    warning_count = 0
    for path in files:
        result = validate_file(path)
        print(f"\n{path.name}")
        print("-" * 50)
        print(format_validation_result(result))
        warning_count += len(result.warnings)
        if not result.valid:
            failures.append(f"{path.name}: {len(result.errors)} error(s)")

    print(f"\nChecked {len(files)} rule set(s), {warning_count} warning(s).")
    if failures:
        print("\nRule-set validation failed:")
        for failure in failures:
            print(f"- {failure}")
        return 1

    print("All rule sets are valid.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
