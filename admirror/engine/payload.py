"""Flattened ad record handed to the host's router/storage layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from admirror.engine.models import AdCandidate, FieldData, Placement

DEFAULT_LABEL_TEXT = "Sponsored"
CREATIVE_TEXT_SEPARATOR = " • "
MAX_CREATIVE_TEXT_LENGTH = 2000
MAX_MEDIA_URLS = 2


class AdDetectionPayload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    platform: str
    page_url: str | None = None
    placement: Placement

    advertiser_name: str | None = None
    advertiser_handle: str | None = None
    label_text: str = DEFAULT_LABEL_TEXT
    creative_text: str = ""
    destination_url: str | None = None
    media_urls: list[str] = Field(default_factory=list)

    confidence: float
    container_rule_id: str
    detected_at: datetime


def build_creative_text(fields: FieldData) -> str:
    """Body first, then a distinct headline, then the call to action."""
    parts: list[str] = []
    if fields.body:
        parts.append(fields.body)
    if fields.headline and fields.headline != fields.body:
        parts.append(fields.headline)
    if fields.cta:
        parts.append(f"[{fields.cta}]")
    return CREATIVE_TEXT_SEPARATOR.join(parts)[:MAX_CREATIVE_TEXT_LENGTH]


def build_payload(candidate: AdCandidate, default_label: str = DEFAULT_LABEL_TEXT) -> AdDetectionPayload:
    fields = candidate.fields

    handle = fields.advertiser_handle
    if handle and handle.startswith("/"):
        handle = handle[1:]

    return AdDetectionPayload(
        platform=candidate.platform,
        page_url=candidate.page_url,
        placement=candidate.placement,
        advertiser_name=fields.advertiser,
        advertiser_handle=handle,
        label_text=fields.label or default_label,
        creative_text=build_creative_text(fields),
        destination_url=fields.destination_url,
        media_urls=[*fields.images, *fields.videos][:MAX_MEDIA_URLS],
        confidence=candidate.validation.confidence,
        container_rule_id=candidate.container_match.rule_id,
        detected_at=candidate.detected_at,
    )
