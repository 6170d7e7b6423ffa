"""Detection pipeline — containers, then fields, then validation.

``AdDetector`` is the entry point hosts use: it validates its rule set up
front and then runs the three phases over any number of documents. The
module-level functions run the same pipeline and refuse rule sets that
fail config validation; the check runs once per rule-set object.
"""

from __future__ import annotations

import logging

from admirror.config.settings import EngineSettings
from admirror.engine import containers as container_phase
from admirror.engine.fields import ExtractionContext, extract_all
from admirror.engine.models import (
    AdCandidate,
    AttemptTrace,
    ContainerMatch,
    ContainerRuleTrace,
    DetectionDebugInfo,
    FieldTrace,
    Placement,
    ValidatorTrace,
)
from admirror.engine.validators import validate_candidate
from admirror.metrics.collector import SelectorMetricsCollector
from admirror.rules.config_validator import ensure_valid
from admirror.rules.models import AdField, RuleSet
from admirror.tree.adapter import TreeNode

logger = logging.getLogger(__name__)

SEARCH_PLATFORMS = frozenset({"google"})
SEARCH_URL_MARKERS = ("/search", "/explore")


def detect_placement(platform: str, page_url: str | None) -> Placement:
    """Classify where on the site an ad was shown."""
    if platform in SEARCH_PLATFORMS:
        return "search"
    if not page_url:
        return "other"
    if any(marker in page_url for marker in SEARCH_URL_MARKERS):
        return "search"
    return "feed"


def _context_for(match: ContainerMatch) -> ExtractionContext | None:
    if match.label_node is None:
        return None
    return ExtractionContext(label_node=match.label_node)


def detect_ads(
    rule_set: RuleSet,
    root: TreeNode,
    seen: set[TreeNode] | None = None,
    page_url: str | None = None,
    metrics: SelectorMetricsCollector | None = None,
    settings: EngineSettings | None = None,
) -> list[AdCandidate]:
    """Run the full pipeline over a document.

    Containers already in ``seen`` are skipped; every newly processed
    container is added to it whether or not it was accepted. The set is
    owned by the caller and typically lives as long as the page.

    Raises:
        ConfigError: the rule set fails config validation.
    """
    ensure_valid(rule_set)
    settings = settings or EngineSettings()
    seen = seen if seen is not None else set()
    candidates: list[AdCandidate] = []
    placement = detect_placement(rule_set.platform, page_url)

    matches = container_phase.find_containers(rule_set, root, settings)
    for match in matches:
        if match.node in seen:
            continue
        seen.add(match.node)

        extraction = extract_all(match.node, rule_set.field_rules, _context_for(match))
        validation = validate_candidate(
            extraction.fields, rule_set.validators, rule_set.min_confidence
        )

        if metrics is not None:
            for attempt in extraction.attempts:
                metrics.record_field_match(attempt.rule_id, attempt.found, attempt.score)
            metrics.record_container_match(match.rule_id, validation.valid, validation.confidence)

        if not validation.valid:
            logger.debug(
                "Rejected container from rule %s (confidence %.3f): %s",
                match.rule_id,
                validation.confidence,
                "; ".join(validation.reasons),
            )
            continue

        candidates.append(
            AdCandidate(
                node=match.node,
                container_match=match,
                fields=extraction.fields,
                field_extractions=extraction.extractions,
                validation=validation,
                placement=placement,
                platform=rule_set.platform,
                page_url=page_url,
            )
        )
        logger.debug(
            "Accepted container from rule %s (confidence %.3f)",
            match.rule_id,
            validation.confidence,
        )

    logger.info(
        "Detection pass for %s: %d containers, %d ads",
        rule_set.id,
        len(matches),
        len(candidates),
    )
    return candidates


def generate_debug_info(
    node: TreeNode,
    rule_set: RuleSet,
    root: TreeNode | None = None,
    settings: EngineSettings | None = None,
) -> DetectionDebugInfo:
    """Explain why ``node`` was or was not detected as an ad.

    Container rules are re-run against ``root`` (the node's document root by
    default). Field rules are all attempted, including those after the one
    that supplied the final value.
    """
    ensure_valid(rule_set)
    settings = settings or EngineSettings()
    if root is None:
        root = node.root()

    rule_traces: list[ContainerRuleTrace] = []
    best_match: ContainerMatch | None = None
    for rule in rule_set.container_rules:
        try:
            matches = container_phase.execute_container_rule(rule, root, settings)
        except Exception as e:
            rule_traces.append(
                ContainerRuleTrace(
                    rule_id=rule.id, matched=False, selector=rule.describe(), error=str(e)
                )
            )
            continue
        matches = container_phase.apply_negative_filters(matches, rule)
        own = next((m for m in matches if m.node is node), None)
        rule_traces.append(
            ContainerRuleTrace(
                rule_id=rule.id,
                matched=own is not None,
                score=own.score if own is not None else None,
                selector=rule.describe(),
            )
        )
        if own is not None and (best_match is None or own.score > best_match.score):
            best_match = own

    context = _context_for(best_match) if best_match is not None else None
    extraction = extract_all(node, rule_set.field_rules, context, exhaustive=True)

    attempts_by_field: dict[AdField, list[AttemptTrace]] = {}
    for attempt in extraction.attempts:
        attempts_by_field.setdefault(attempt.field, []).append(
            AttemptTrace(
                rule_id=attempt.rule_id,
                selector=attempt.selector,
                found=attempt.found,
                value=attempt.value,
            )
        )
    field_traces = [
        FieldTrace(
            field=ad_field,
            attempts=attempts,
            final_value=extraction.fields.get(ad_field) or None,
        )
        for ad_field, attempts in attempts_by_field.items()
    ]

    validation = validate_candidate(
        extraction.fields, rule_set.validators, rule_set.min_confidence
    )
    accepted_nodes = {
        match.node for match in container_phase.find_containers(rule_set, root, settings)
    }

    return DetectionDebugInfo(
        container_rules=rule_traces,
        field_attempts=field_traces,
        validation_details=[
            ValidatorTrace(
                validator=detail.validator,
                passed=detail.passed,
                weight=detail.weight,
                message=detail.message,
            )
            for detail in validation.details
        ],
        overall_confidence=validation.confidence,
        accepted=validation.valid and node in accepted_nodes,
    )


class AdDetector:
    """A validated rule set bound to engine settings and an optional metrics sink."""

    def __init__(
        self,
        rule_set: RuleSet,
        metrics: SelectorMetricsCollector | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        ensure_valid(rule_set)
        self._rule_set = rule_set
        self._metrics = metrics
        self._settings = settings or EngineSettings()

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    @property
    def metrics(self) -> SelectorMetricsCollector | None:
        return self._metrics

    def find_containers(self, root: TreeNode) -> list[ContainerMatch]:
        return container_phase.find_containers(self._rule_set, root, self._settings)

    def detect(
        self,
        root: TreeNode,
        seen: set[TreeNode] | None = None,
        page_url: str | None = None,
    ) -> list[AdCandidate]:
        return detect_ads(
            self._rule_set,
            root,
            seen=seen,
            page_url=page_url,
            metrics=self._metrics,
            settings=self._settings,
        )

    def debug_info(self, node: TreeNode, root: TreeNode | None = None) -> DetectionDebugInfo:
        return generate_debug_info(node, self._rule_set, root=root, settings=self._settings)
