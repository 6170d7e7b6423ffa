"""Rule-set files and hostname lookup."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from admirror.rules.config_validator import ConfigValidationResult, validate_rule_set
from admirror.rules.models import RuleSet
from admirror.telemetry.errors import ConfigError

logger = logging.getLogger(__name__)


def load_rule_set(path: Path) -> RuleSet:
    """Read, parse and validate a JSON rule set.

    Raises:
        ConfigError: the file is not JSON or the rule set has errors.
    """
    try:
        document = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        result = ConfigValidationResult()
        result.error(f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})")
        raise ConfigError(result, source=str(path)) from e

    result = validate_rule_set(document)
    if not result.valid or result.rule_set is None:
        raise ConfigError(result, source=str(path))

    for warning in result.warnings:
        logger.warning("%s: %s", path, warning.message)

    rule_set = result.rule_set
    logger.debug("Loaded rule set %s v%s from %s", rule_set.id, rule_set.version, path)
    return rule_set


def load_rule_sets(directory: Path) -> list[RuleSet]:
    """Load every ``*.json`` rule set in a directory, in file-name order."""
    return [load_rule_set(path) for path in sorted(directory.glob("*.json"))]


def _normalize_host(hostname: str) -> str:
    return hostname.strip().lower().rstrip(".")


class RuleSetRegistry:
    """Maps page hostnames to the rule set that handles them."""

    def __init__(self, rule_sets: Iterable[RuleSet] = ()) -> None:
        self._rule_sets: list[RuleSet] = []
        for rule_set in rule_sets:
            self.register(rule_set)

    def __len__(self) -> int:
        return len(self._rule_sets)

    def __iter__(self) -> Iterator[RuleSet]:
        return iter(self._rule_sets)

    def register(self, rule_set: RuleSet) -> None:
        if any(existing.id == rule_set.id for existing in self._rule_sets):
            raise ValueError(f"Rule set already registered: {rule_set.id}")
        self._rule_sets.append(rule_set)

    def get(self, rule_set_id: str) -> RuleSet | None:
        return next((rs for rs in self._rule_sets if rs.id == rule_set_id), None)

    def for_hostname(self, hostname: str) -> RuleSet | None:
        """First rule set whose hostname is ``hostname`` or one of its parent domains.

        ``www.x.com`` and ``mobile.x.com`` both resolve to a rule set
        declaring ``x.com``; ``notx.com`` does not.
        """
        host = _normalize_host(hostname)
        if not host:
            return None
        for rule_set in self._rule_sets:
            for declared in rule_set.hostnames:
                declared = _normalize_host(declared)
                if declared and (host == declared or host.endswith("." + declared)):
                    return rule_set
        return None

    @classmethod
    def from_directory(cls, directory: Path) -> RuleSetRegistry:
        return cls(load_rule_sets(directory))
