"""Field extractor — phase 2 of the detection pipeline.

For each field, the rules form a fallback chain tried in descending score
order; the first rule producing a non-empty value wins. Every attempt is
recorded so debug output and metrics can see misses as well as hits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from admirror.engine.models import FieldAttempt, FieldData, FieldExtraction
from admirror.rules.models import MEDIA_FIELDS, AdField, FieldRule, Transform
from admirror.telemetry.errors import ErrorCode, emit_structured_error
from admirror.tree.adapter import TreeNode

logger = logging.getLogger(__name__)

PHASE = "field"

# Fields whose value is resolved relative to the label node when one is known.
CONTEXT_AWARE_FIELDS = frozenset({AdField.ADVERTISER, AdField.ADVERTISER_HANDLE})

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
        "_ga",
        "mc_cid",
        "mc_eid",
    }
)


@dataclass
class ExtractionContext:
    """Extra knowledge about the container, from phase 1."""

    label_node: TreeNode | None = None


@dataclass
class FieldExtractionResult:
    fields: FieldData
    extractions: list[FieldExtraction] = field(default_factory=list)
    attempts: list[FieldAttempt] = field(default_factory=list)


def clean_url(url: str) -> str:
    """Strip tracking parameters. Relative or malformed URLs pass through."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


def apply_transform(value: str, transform: Transform | None) -> str:
    if transform is None:
        return value
    if transform is Transform.TRIM:
        return value.strip()
    if transform is Transform.LOWERCASE:
        return value.lower()
    if transform is Transform.URL_CLEAN:
        return clean_url(value)
    raise ValueError(f"Unknown transform: {transform}")


def dom_distance(a: TreeNode, b: TreeNode) -> int:
    """Steps from each node up to their lowest common ancestor, summed.

    Nodes in different trees are infinitely far apart; returned as a large
    sentinel so they sort last.
    """
    path_a = a.path_from_root()
    path_b = b.path_from_root()
    common = 0
    for node_a, node_b in zip(path_a, path_b):
        if node_a is not node_b:
            break
        common += 1
    if common == 0:
        return 1_000_000
    return (len(path_a) - common) + (len(path_b) - common)


def nearest_to(anchor: TreeNode, candidates: list[TreeNode]) -> TreeNode | None:
    """The candidate closest to ``anchor``; ties go to document order."""
    best: TreeNode | None = None
    best_distance = 0
    for candidate in candidates:
        distance = dom_distance(anchor, candidate)
        if best is None or distance < best_distance:
            best = candidate
            best_distance = distance
    return best


def read_value(node: TreeNode, rule: FieldRule) -> str:
    if rule.attr:
        return (node.get_attribute(rule.attr) or "").strip()
    return node.text.strip()


def run_field_rule(
    container: TreeNode,
    rule: FieldRule,
    context: ExtractionContext | None = None,
) -> tuple[str | list[str] | None, bool]:
    """Apply one rule to a container.

    Returns the extracted value (``None`` when nothing usable was found)
    and whether label proximity chose the matched node.
    """
    if rule.field in MEDIA_FIELDS:
        attr = rule.attr or "src"
        urls = []
        for node in container.select(rule.selector):
            raw = (node.get_attribute(attr) or "").strip()
            if raw:
                urls.append(apply_transform(raw, rule.transform))
        return (urls or None), False

    label_node = context.label_node if context else None
    if label_node is not None and rule.field in CONTEXT_AWARE_FIELDS:
        node = nearest_to(label_node, container.select(rule.selector))
        context_aware = True
    else:
        node = container.select_one(rule.selector)
        context_aware = False

    if node is None:
        return None, context_aware
    value = apply_transform(read_value(node, rule), rule.transform)
    return (value or None), context_aware


def group_rules(field_rules: list[FieldRule]) -> dict[AdField, list[FieldRule]]:
    """Rules per field, highest score first. Equal scores keep config order."""
    grouped: dict[AdField, list[FieldRule]] = {}
    for rule in field_rules:
        grouped.setdefault(rule.field, []).append(rule)
    return {
        ad_field: sorted(rules, key=lambda r: r.score, reverse=True)
        for ad_field, rules in grouped.items()
    }


def extract_all(
    container: TreeNode,
    field_rules: list[FieldRule],
    context: ExtractionContext | None = None,
    exhaustive: bool = False,
) -> FieldExtractionResult:
    """Run the fallback chains for every configured field.

    With ``exhaustive`` every rule is attempted even after a field is
    filled; the debug trace uses this to show which rules would have hit.
    """
    result = FieldExtractionResult(fields=FieldData())

    for ad_field, rules in group_rules(field_rules).items():
        filled = False
        for rule in rules:
            if filled and not exhaustive:
                break
            try:
                value, context_aware = run_field_rule(container, rule, context)
            except Exception as e:
                emit_structured_error(
                    logger,
                    code=ErrorCode.FIELD_EXTRACTION_FAILED,
                    message=str(e),
                    suppressed=True,
                    rule_id=rule.id,
                    phase=PHASE,
                    details={"field": ad_field.value, "selector": rule.selector},
                )
                value, context_aware = None, False

            found = value is not None
            result.attempts.append(
                FieldAttempt(
                    field=ad_field,
                    rule_id=rule.id,
                    selector=rule.selector,
                    score=rule.score,
                    found=found,
                    value=value,
                    context_aware=context_aware,
                )
            )
            if found and not filled:
                result.fields.set(ad_field, value)
                result.extractions.append(
                    FieldExtraction(
                        field=ad_field,
                        value=value,
                        rule_id=rule.id,
                        selector=rule.selector,
                        score=rule.score,
                    )
                )
                filled = True

        logger.debug("Field %s: %s", ad_field.value, "found" if filled else "missing")

    return result


def extract_fields(
    container: TreeNode,
    field_rules: list[FieldRule],
    context: ExtractionContext | None = None,
) -> tuple[FieldData, list[FieldExtraction]]:
    """Extract the fields of one ad container."""
    result = extract_all(container, field_rules, context)
    return result.fields, result.extractions
