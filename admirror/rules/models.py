"""Rule-set data models — the wire contract between rule authors and the engine.

Rule sets are JSON documents with camelCase keys. Every rule family is a
tagged union discriminated by ``type`` so that a rule can only carry the
fields its strategy uses. Ranges and selector syntax are not enforced
here; they are checked by the config validator, which reports every
problem at once instead of failing on the first.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator
from pydantic.alias_generators import to_camel

DEFAULT_MIN_CONFIDENCE = 0.5

_WIRE_CONFIG = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class AdField(str, Enum):
    """Logical fields that can be extracted from an ad container."""

    LABEL = "label"
    ADVERTISER = "advertiser"
    ADVERTISER_HANDLE = "advertiserHandle"
    HEADLINE = "headline"
    BODY = "body"
    CTA = "cta"
    DESTINATION_URL = "destinationUrl"
    IMAGE = "image"
    VIDEO = "video"


MEDIA_FIELDS = frozenset({AdField.IMAGE, AdField.VIDEO})
CRITICAL_FIELDS = (AdField.ADVERTISER, AdField.DESTINATION_URL)


class Transform(str, Enum):
    TRIM = "trim"
    LOWERCASE = "lowercase"
    URL_CLEAN = "url-clean"


class ContainerRuleType(str, Enum):
    CSS = "css"
    LABEL_LED = "label-led"
    ATTRIBUTE = "attribute"


class ValidatorType(str, Enum):
    REQUIRED_FIELD = "required-field"
    LABEL_PATTERN = "label-pattern"
    URL_VALID = "url-valid"
    MIN_TEXT_LENGTH = "min-text-length"
    ADVERTISER = "advertiser"
    DEFAULT = "default"


# --- Container rules ---


class _ContainerRuleBase(BaseModel):
    model_config = _WIRE_CONFIG

    id: str
    score: float
    scope_selector: str | None = None
    exclude_selectors: list[str] = Field(default_factory=list)
    exclude_if_contains: list[str] = Field(default_factory=list)
    exclude_ancestors: list[str] = Field(default_factory=list)

    @property
    def rule_type(self) -> ContainerRuleType:
        return ContainerRuleType(self.type)  # type: ignore[attr-defined]

    @abstractmethod
    def describe(self) -> str:
        """Human-readable target of this rule, for debug output."""


class CssRule(_ContainerRuleBase):
    type: Literal["css"] = "css"
    selector: str

    def describe(self) -> str:
        return self.selector


class LabelLedRule(_ContainerRuleBase):
    type: Literal["label-led"] = "label-led"
    label_texts: list[str]
    container_selector: str | None = None

    def describe(self) -> str:
        return ", ".join(self.label_texts)


class AttributeRule(_ContainerRuleBase):
    type: Literal["attribute"] = "attribute"
    attribute_key: str
    attribute_value: str | None = None

    @property
    def selector(self) -> str:
        if self.attribute_value is None or self.attribute_value == "":
            return f"[{self.attribute_key}]"
        value = self.attribute_value.replace("\\", "\\\\").replace('"', '\\"')
        return f'[{self.attribute_key}="{value}"]'

    def describe(self) -> str:
        return self.selector


ContainerRule = Annotated[Union[CssRule, LabelLedRule, AttributeRule], Field(discriminator="type")]


# --- Field rules ---


class FieldRule(BaseModel):
    """One extraction strategy for a field. Rules for the same field form a
    fallback chain ordered by score."""

    model_config = _WIRE_CONFIG

    id: str = ""
    field: AdField
    selector: str
    attr: str | None = None
    score: float
    transform: Transform | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            field = data.get("field")
            field = getattr(field, "value", field)
            data = {**data, "id": f"{field}@{data.get('selector', '')}"}
        return data


# --- Validation rules ---


class _ValidationRuleBase(BaseModel):
    model_config = _WIRE_CONFIG

    weight: float

    @property
    def validator_type(self) -> ValidatorType:
        return ValidatorType(self.type)  # type: ignore[attr-defined]


class RequiredFieldRule(_ValidationRuleBase):
    type: Literal["required-field"] = "required-field"
    field: AdField


class LabelPatternRule(_ValidationRuleBase):
    type: Literal["label-pattern"] = "label-pattern"
    pattern: str


class UrlValidRule(_ValidationRuleBase):
    type: Literal["url-valid"] = "url-valid"


class MinTextLengthRule(_ValidationRuleBase):
    type: Literal["min-text-length"] = "min-text-length"
    field: AdField
    min_length: int = Field(ge=1)


class AdvertiserRule(_ValidationRuleBase):
    type: Literal["advertiser"] = "advertiser"


ValidationRule = Annotated[
    Union[RequiredFieldRule, LabelPatternRule, UrlValidRule, MinTextLengthRule, AdvertiserRule],
    Field(discriminator="type"),
]


# --- Rule set ---


class RuleSet(BaseModel):
    """Complete detection configuration for one site. Read-only once loaded."""

    model_config = _WIRE_CONFIG

    id: str
    version: str = ""
    platform: str = ""
    hostnames: list[str] = Field(default_factory=list)

    # Phase 1: container detection
    container_rules: list[ContainerRule] = Field(default_factory=list)
    container_score_threshold: float | None = None
    adaptive_threshold: bool = False

    # Phase 2: field extraction
    field_rules: list[FieldRule] = Field(default_factory=list)

    # Phase 3: validation
    validators: list[ValidationRule] = Field(default_factory=list)
    min_confidence: float = DEFAULT_MIN_CONFIDENCE

    debug: bool = False
    notes: str | None = None

    # Config validation result, recorded by the config validator.
    _validation: Any = PrivateAttr(default=None)

    @model_validator(mode="before")
    @classmethod
    def _fill_identity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("id") and data.get("platform"):
            data["id"] = data["platform"]
        if not data.get("platform") and data.get("id"):
            data["platform"] = data["id"]
        return data

    def model_copy(self, *, update: Mapping[str, Any] | None = None, deep: bool = False) -> RuleSet:
        copy = super().model_copy(update=update, deep=deep)
        copy._validation = None
        return copy

    def fields_with_extractors(self) -> set[AdField]:
        return {rule.field for rule in self.field_rules}

    def to_wire(self) -> dict[str, Any]:
        """Serialize back to the camelCase JSON document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
