"""Detection result types.

Transient per-pass results that hold tree nodes are dataclasses; anything
meant to leave the engine as data (field values, debug traces) is a
pydantic model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from admirror.rules.models import AdField, ContainerRuleType, ValidatorType
from admirror.tree.adapter import TreeNode

Placement = Literal["feed", "search", "other"]

_WIRE_CONFIG = ConfigDict(populate_by_name=True, alias_generator=to_camel)


@dataclass
class ContainerMatch:
    """A node judged to be an ad container by one rule (phase 1)."""

    node: TreeNode
    rule_id: str
    rule_type: ContainerRuleType
    score: float
    matched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    label_node: TreeNode | None = None
    label_confidence: float | None = None


class FieldData(BaseModel):
    """Extracted values for one candidate. Every field is optional."""

    model_config = _WIRE_CONFIG

    label: str | None = None
    advertiser: str | None = None
    advertiser_handle: str | None = None
    headline: str | None = None
    body: str | None = None
    cta: str | None = None
    destination_url: str | None = None
    images: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)

    def get(self, ad_field: AdField) -> str | list[str] | None:
        return getattr(self, _ATTRIBUTE_FOR_FIELD[ad_field])

    def set(self, ad_field: AdField, value: str | list[str]) -> None:
        setattr(self, _ATTRIBUTE_FOR_FIELD[ad_field], value)

    def has(self, ad_field: AdField) -> bool:
        value = self.get(ad_field)
        if isinstance(value, str):
            return bool(value.strip())
        return bool(value)


_ATTRIBUTE_FOR_FIELD: dict[AdField, str] = {
    AdField.LABEL: "label",
    AdField.ADVERTISER: "advertiser",
    AdField.ADVERTISER_HANDLE: "advertiser_handle",
    AdField.HEADLINE: "headline",
    AdField.BODY: "body",
    AdField.CTA: "cta",
    AdField.DESTINATION_URL: "destination_url",
    AdField.IMAGE: "images",
    AdField.VIDEO: "videos",
}


@dataclass(frozen=True)
class FieldExtraction:
    """The rule that produced a field's final value."""

    field: AdField
    value: str | list[str]
    rule_id: str
    selector: str
    score: float


@dataclass(frozen=True)
class FieldAttempt:
    """One rule tried against a container, hit or miss."""

    field: AdField
    rule_id: str
    selector: str
    score: float
    found: bool
    value: str | list[str] | None = None
    context_aware: bool = False


@dataclass(frozen=True)
class ValidatorDetail:
    validator: ValidatorType
    passed: bool
    weight: float
    score: float
    message: str


@dataclass
class ValidationResult:
    valid: bool
    confidence: float
    reasons: list[str] = field(default_factory=list)
    field_scores: dict[AdField, float] = field(default_factory=dict)
    details: list[ValidatorDetail] = field(default_factory=list)


@dataclass
class AdCandidate:
    """An accepted ad container. Owned by the caller once returned."""

    node: TreeNode
    container_match: ContainerMatch
    fields: FieldData
    field_extractions: list[FieldExtraction]
    validation: ValidationResult
    placement: Placement
    platform: str
    page_url: str | None = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# --- Debug trace ---


class ContainerRuleTrace(BaseModel):
    model_config = _WIRE_CONFIG

    rule_id: str
    matched: bool
    score: float | None = None
    selector: str | None = None
    error: str | None = None


class AttemptTrace(BaseModel):
    model_config = _WIRE_CONFIG

    rule_id: str
    selector: str
    found: bool
    value: str | list[str] | None = None


class FieldTrace(BaseModel):
    model_config = _WIRE_CONFIG

    field: AdField
    attempts: list[AttemptTrace] = Field(default_factory=list)
    final_value: str | list[str] | None = None


class ValidatorTrace(BaseModel):
    model_config = _WIRE_CONFIG

    validator: ValidatorType
    passed: bool
    weight: float
    message: str


class DetectionDebugInfo(BaseModel):
    """Why a node was or was not classified as an ad."""

    model_config = _WIRE_CONFIG

    container_rules: list[ContainerRuleTrace] = Field(default_factory=list)
    field_attempts: list[FieldTrace] = Field(default_factory=list)
    validation_details: list[ValidatorTrace] = Field(default_factory=list)
    overall_confidence: float = 0.0
    accepted: bool = False
