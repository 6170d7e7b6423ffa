"""Validation & scoring — phase 3 of the detection pipeline.

Each validator is a pure function scoring one ``FieldData`` against one
rule and returning a human-readable message regardless of outcome. The
candidate's confidence is the awarded score divided by the total weight.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from admirror.engine.models import FieldData, ValidationResult, ValidatorDetail
from admirror.rules.models import (
    AdField,
    AdvertiserRule,
    LabelPatternRule,
    MinTextLengthRule,
    RequiredFieldRule,
    UrlValidRule,
    ValidationRule,
    ValidatorType,
)

logger = logging.getLogger(__name__)

ADVERTISER_SUSPICIOUS_CREDIT = 0.3

# Completeness weights used when a rule set configures no validators.
DEFAULT_FIELD_WEIGHTS: tuple[tuple[AdField, float], ...] = (
    (AdField.ADVERTISER, 0.3),
    (AdField.DESTINATION_URL, 0.3),
    (AdField.LABEL, 0.2),
    (AdField.HEADLINE, 0.2),
    (AdField.BODY, 0.1),
    (AdField.IMAGE, 0.1),
    (AdField.VIDEO, 0.1),
)

_DIGITS_ONLY = re.compile(r"^[\d\s]+$")
_PUNCTUATION_ONLY = re.compile(r"^[^\w\s]+$")


@dataclass(frozen=True)
class ValidatorOutcome:
    passed: bool
    message: str
    score: float


def validate_required_field(ad_field: AdField, fields: FieldData, weight: float) -> ValidatorOutcome:
    passed = fields.has(ad_field)
    return ValidatorOutcome(
        passed=passed,
        message=(
            f"Field '{ad_field.value}' present"
            if passed
            else f"Missing required field '{ad_field.value}'"
        ),
        score=weight if passed else 0.0,
    )


def validate_label_pattern(pattern: str, fields: FieldData, weight: float) -> ValidatorOutcome:
    label = fields.label or ""
    try:
        passed = re.search(pattern, label, re.IGNORECASE) is not None
    except re.error as e:
        return ValidatorOutcome(False, f"Label pattern {pattern!r} is invalid: {e}", 0.0)
    return ValidatorOutcome(
        passed=passed,
        message=(
            f"Label matches pattern: {pattern}"
            if passed
            else f"Label '{label}' does not match pattern: {pattern}"
        ),
        score=weight if passed else 0.0,
    )


def validate_url(url: str | None, weight: float) -> ValidatorOutcome:
    if not url or not url.strip():
        return ValidatorOutcome(False, "URL is missing or empty", 0.0)

    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return ValidatorOutcome(False, f"Invalid URL format: {url}", 0.0)

    if parsed.scheme not in {"http", "https"}:
        return ValidatorOutcome(False, f"Invalid URL protocol: {parsed.scheme or '(none)'}", 0.0)
    if not parsed.hostname:
        return ValidatorOutcome(False, f"Invalid URL format: {url}", 0.0)
    return ValidatorOutcome(True, f"Valid URL: {parsed.hostname}", weight)


def validate_min_text_length(
    ad_field: AdField, fields: FieldData, min_length: int, weight: float
) -> ValidatorOutcome:
    value = fields.get(ad_field)
    text = value if isinstance(value, str) else ""
    length = len(text)
    if length >= min_length:
        return ValidatorOutcome(
            True,
            f"Field '{ad_field.value}' has sufficient length ({length} >= {min_length})",
            weight,
        )
    # Partial credit proportional to how close the text came.
    return ValidatorOutcome(
        False,
        f"Field '{ad_field.value}' too short ({length} < {min_length})",
        weight * (length / min_length),
    )


def validate_advertiser(advertiser: str | None, weight: float) -> ValidatorOutcome:
    if not advertiser or not advertiser.strip():
        return ValidatorOutcome(False, "Advertiser name is missing", 0.0)

    name = advertiser.strip()
    if len(name) < 2:
        return ValidatorOutcome(False, "Advertiser name too short", 0.0)

    # All digits or all punctuation: suspicious, but might be legitimate.
    if _DIGITS_ONLY.match(name) or _PUNCTUATION_ONLY.match(name):
        return ValidatorOutcome(
            False, "Advertiser name appears invalid", weight * ADVERTISER_SUSPICIOUS_CREDIT
        )

    return ValidatorOutcome(True, f"Valid advertiser: {name[:30]}", weight)


def run_validator(rule: ValidationRule, fields: FieldData) -> tuple[ValidatorOutcome, AdField]:
    """Run one validator; returns the outcome and the field it scores."""
    if isinstance(rule, RequiredFieldRule):
        return validate_required_field(rule.field, fields, rule.weight), rule.field
    if isinstance(rule, LabelPatternRule):
        return validate_label_pattern(rule.pattern, fields, rule.weight), AdField.LABEL
    if isinstance(rule, UrlValidRule):
        return validate_url(fields.destination_url, rule.weight), AdField.DESTINATION_URL
    if isinstance(rule, MinTextLengthRule):
        outcome = validate_min_text_length(rule.field, fields, rule.min_length, rule.weight)
        return outcome, rule.field
    if isinstance(rule, AdvertiserRule):
        return validate_advertiser(fields.advertiser, rule.weight), AdField.ADVERTISER
    raise TypeError(f"Unknown validation rule: {type(rule).__name__}")


def validate_candidate(
    fields: FieldData,
    validators: list[ValidationRule],
    min_confidence: float,
) -> ValidationResult:
    """Score a candidate's fields against the configured validators.

    Falls back to the completeness heuristic when no validators are set.
    """
    if not validators:
        return default_validation(fields, min_confidence)

    reasons: list[str] = []
    field_scores: dict[AdField, float] = {}
    details: list[ValidatorDetail] = []
    total_score = 0.0
    max_score = 0.0

    for rule in validators:
        outcome, scored_field = run_validator(rule, fields)
        max_score += rule.weight
        total_score += outcome.score
        field_scores[scored_field] = field_scores.get(scored_field, 0.0) + outcome.score
        reasons.append(outcome.message)
        details.append(
            ValidatorDetail(
                validator=rule.validator_type,
                passed=outcome.passed,
                weight=rule.weight,
                score=outcome.score,
                message=outcome.message,
            )
        )

    confidence = total_score / max_score if max_score > 0 else 0.0
    return _finish(confidence, min_confidence, reasons, field_scores, details)


def compute_confidence(fields: FieldData) -> float:
    """Completeness score from the default field weights."""
    max_score = sum(weight for _, weight in DEFAULT_FIELD_WEIGHTS)
    score = sum(weight for ad_field, weight in DEFAULT_FIELD_WEIGHTS if fields.has(ad_field))
    return score / max_score if max_score > 0 else 0.0


def default_validation(fields: FieldData, min_confidence: float) -> ValidationResult:
    reasons: list[str] = []
    field_scores: dict[AdField, float] = {}
    details: list[ValidatorDetail] = []

    for ad_field, weight in DEFAULT_FIELD_WEIGHTS:
        present = fields.has(ad_field)
        message = f"Field '{ad_field.value}' present" if present else f"Missing {ad_field.value}"
        score = weight if present else 0.0
        field_scores[ad_field] = score
        reasons.append(message)
        details.append(ValidatorDetail(ValidatorType.DEFAULT, present, weight, score, message))

    return _finish(compute_confidence(fields), min_confidence, reasons, field_scores, details)


def _finish(
    confidence: float,
    min_confidence: float,
    reasons: list[str],
    field_scores: dict[AdField, float],
    details: list[ValidatorDetail],
) -> ValidationResult:
    valid = confidence >= min_confidence
    if not valid:
        reasons.insert(0, f"Confidence {confidence:.2f} below threshold {min_confidence}")
    logger.debug("Validation confidence=%.3f valid=%s", confidence, valid)
    return ValidationResult(
        valid=valid,
        confidence=confidence,
        reasons=reasons,
        field_scores=field_scores,
        details=details,
    )
