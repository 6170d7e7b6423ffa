"""Static validation of rule sets.

A rule set must pass this check (no errors) before the engine accepts it.
Warnings flag likely authoring mistakes but never block a rule set.

Checks:
1. Required structure: id, at least one container rule and one field rule
2. Every selector parses (container, scope, exclude, ancestor, field)
3. Every score and threshold lies within [0, 1]
4. Validator weights are non-negative, not all zero, and sum close to 1.0
5. The critical fields (advertiser, destinationUrl) have an extractor
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import ValidationError

from admirror.rules.models import (
    CRITICAL_FIELDS,
    AttributeRule,
    ContainerRule,
    CssRule,
    LabelLedRule,
    LabelPatternRule,
    RuleSet,
)
from admirror.telemetry.errors import ConfigError
from admirror.tree.adapter import check_selector

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 0.15


@dataclass(frozen=True)
class ConfigIssue:
    """A single validation finding."""

    severity: Literal["error", "warning"]
    message: str
    location: str | None = None
    rule_id: str | None = None


@dataclass
class ConfigValidationResult:
    errors: list[ConfigIssue] = field(default_factory=list)
    warnings: list[ConfigIssue] = field(default_factory=list)
    rule_set: RuleSet | None = None

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str, location: str | None = None, rule_id: str | None = None) -> None:
        self.errors.append(ConfigIssue("error", message, location, rule_id))

    def warning(self, message: str, location: str | None = None, rule_id: str | None = None) -> None:
        self.warnings.append(ConfigIssue("warning", message, location, rule_id))


def validate_rule_set(source: RuleSet | Mapping[str, Any]) -> ConfigValidationResult:
    """Validate a rule set given as a model or as its raw JSON document."""
    result = ConfigValidationResult()

    if isinstance(source, RuleSet):
        rule_set = source
        min_confidence_set = "min_confidence" in source.model_fields_set
    elif isinstance(source, Mapping):
        try:
            rule_set = RuleSet.model_validate(dict(source))
        except ValidationError as e:
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"]) or None
                result.error(f"Malformed rule set: {err['msg']}", location=location)
            return result
        min_confidence_set = "minConfidence" in source or "min_confidence" in source
    else:
        result.error(f"Rule set must be an object, got {type(source).__name__}")
        return result

    result.rule_set = rule_set
    _check_structure(rule_set, result)

    seen_ids: set[str] = set()
    for index, rule in enumerate(rule_set.container_rules):
        if rule.id in seen_ids:
            result.warning(f"Duplicate container rule id: {rule.id}", rule_id=rule.id)
        seen_ids.add(rule.id)
        _check_container_rule(rule, f"containerRules[{index}]", result)

    for index, field_rule in enumerate(rule_set.field_rules):
        location = f"fieldRules[{index}]"
        _check_selector(field_rule.selector, "Invalid CSS selector", location, field_rule.id, result)
        _check_unit_range(field_rule.score, "Score", location, field_rule.id, result)

    _check_validators(rule_set, result)
    _check_thresholds(rule_set, min_confidence_set, result)

    extracted = rule_set.fields_with_extractors()
    for critical in CRITICAL_FIELDS:
        if critical not in extracted:
            result.warning(
                f"No extractor for critical field: {critical.value}", location="fieldRules"
            )

    rule_set._validation = result
    return result


def ensure_valid(rule_set: RuleSet) -> ConfigValidationResult:
    """Return the rule set's validation result, raising ``ConfigError`` on errors.

    Rule sets are read-only, so the result of the first check is reused by
    every later detection pass. Warnings are logged when the check runs.
    """
    result = rule_set._validation
    if result is None:
        result = validate_rule_set(rule_set)
        for warning in result.warnings:
            logger.warning("Rule set %s: %s", rule_set.id, warning.message)
    if not result.valid:
        raise ConfigError(result, source=rule_set.id)
    return result


def _check_structure(rule_set: RuleSet, result: ConfigValidationResult) -> None:
    if not rule_set.id.strip():
        result.error("Missing required field: id", location="id")
    if not rule_set.version:
        result.warning("Missing version field", location="version")
    if not rule_set.container_rules:
        result.error("No container rules defined", location="containerRules")
    if not rule_set.field_rules:
        result.error("No field rules defined", location="fieldRules")


def _check_container_rule(
    rule: ContainerRule, location: str, result: ConfigValidationResult
) -> None:
    if not rule.id.strip():
        result.error("Container rule missing id", location=location)

    if isinstance(rule, CssRule):
        _check_selector(rule.selector, "Invalid CSS selector", location, rule.id, result)
    elif isinstance(rule, LabelLedRule):
        if not any(text.strip() for text in rule.label_texts):
            result.error("Label-led rule missing labelTexts", location=location, rule_id=rule.id)
        if rule.container_selector is not None:
            _check_selector(
                rule.container_selector, "Invalid container selector", location, rule.id, result
            )
    elif isinstance(rule, AttributeRule):
        if not rule.attribute_key.strip():
            result.error(
                "Attribute rule missing attributeKey", location=location, rule_id=rule.id
            )
        else:
            _check_selector(rule.selector, "Invalid attribute rule", location, rule.id, result)

    if rule.scope_selector is not None:
        _check_selector(rule.scope_selector, "Invalid scope selector", location, rule.id, result)
    for selector in rule.exclude_selectors:
        _check_selector(selector, "Invalid exclude selector", location, rule.id, result)
    for selector in rule.exclude_ancestors:
        _check_selector(selector, "Invalid ancestor selector", location, rule.id, result)

    _check_unit_range(rule.score, "Score", location, rule.id, result)


def _check_validators(rule_set: RuleSet, result: ConfigValidationResult) -> None:
    if not rule_set.validators:
        return

    total_weight = 0.0
    for index, validator in enumerate(rule_set.validators):
        location = f"validators[{index}]"
        if validator.weight < 0:
            result.error(f"Validator weight {validator.weight} is negative", location=location)
        total_weight += validator.weight

        if isinstance(validator, LabelPatternRule):
            try:
                re.compile(validator.pattern)
            except re.error as e:
                result.error(f"Invalid label pattern {validator.pattern!r}: {e}", location=location)

    if total_weight == 0:
        result.error("Validator weights sum to 0", location="validators")
    elif abs(total_weight - 1.0) > WEIGHT_SUM_TOLERANCE:
        result.warning(
            f"Validator weights sum to {total_weight:.2f}, expected ~1.0", location="validators"
        )


def _check_thresholds(
    rule_set: RuleSet, min_confidence_set: bool, result: ConfigValidationResult
) -> None:
    if not min_confidence_set:
        result.warning("minConfidence not set, will use default", location="minConfidence")
    _check_unit_range(rule_set.min_confidence, "minConfidence", "minConfidence", None, result)

    if rule_set.container_score_threshold is not None:
        _check_unit_range(
            rule_set.container_score_threshold,
            "containerScoreThreshold",
            "containerScoreThreshold",
            None,
            result,
        )


def _check_selector(
    selector: str,
    label: str,
    location: str,
    rule_id: str | None,
    result: ConfigValidationResult,
) -> None:
    error = check_selector(selector)
    if error:
        result.error(f"{label}: {error}", location=location, rule_id=rule_id)


def _check_unit_range(
    value: float,
    label: str,
    location: str,
    rule_id: str | None,
    result: ConfigValidationResult,
) -> None:
    if not 0.0 <= value <= 1.0:
        result.error(f"{label} {value} outside valid range [0, 1]", location=location, rule_id=rule_id)


def format_validation_result(result: ConfigValidationResult) -> str:
    """Render a validation result as a human-readable report."""
    lines = ["OK: configuration is valid" if result.valid else "FAIL: configuration has errors"]

    for title, issues in (("error(s)", result.errors), ("warning(s)", result.warnings)):
        if not issues:
            continue
        lines.append(f"\n{len(issues)} {title}:")
        for issue in issues:
            line = f"  - {issue.message}"
            if issue.rule_id:
                line += f" (rule: {issue.rule_id})"
            if issue.location:
                line += f" [{issue.location}]"
            lines.append(line)

    return "\n".join(lines)
