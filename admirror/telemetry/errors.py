"""Error taxonomy and structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from admirror.rules.config_validator import ConfigValidationResult


class ErrorCode(str, Enum):
    """Canonical error codes for suppressed engine failures."""

    RULE_EXECUTION_FAILED = "RULE_EXECUTION_FAILED"
    INVALID_SELECTOR = "INVALID_SELECTOR"
    SCOPE_NOT_FOUND = "SCOPE_NOT_FOUND"
    FIELD_EXTRACTION_FAILED = "FIELD_EXTRACTION_FAILED"
    METRICS_LOAD_FAILED = "METRICS_LOAD_FAILED"


class AdMirrorError(Exception):
    """Base class for all admirror errors."""


class RuleError(AdMirrorError):
    """A single rule could not be executed (bad selector, bad value).

    Always caught at rule scope: the rule contributes zero matches.
    """

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        super().__init__(message)
        self.rule_id = rule_id


class SelectorError(RuleError):
    """A CSS selector failed to parse."""

    def __init__(self, selector: str, reason: str, rule_id: str | None = None) -> None:
        super().__init__(f"Invalid selector {selector!r}: {reason}", rule_id=rule_id)
        self.selector = selector
        self.reason = reason


class ConfigError(AdMirrorError):
    """A rule set failed config validation and must not be used."""

    def __init__(self, result: ConfigValidationResult, source: str | None = None) -> None:
        self.result = result
        self.source = source
        messages = "; ".join(issue.message for issue in result.errors) or "invalid rule set"
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{messages}")


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    rule_id: str | None = None,
    phase: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "admirror_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "rule_id": rule_id,
            "phase": phase,
            "details": details or {},
        },
    )
