"""Container detector — phase 1 of the detection pipeline.

Runs every container rule of a rule set against a document, drops matches
caught by the rule's negative filters, merges duplicates and applies the
container score threshold.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from admirror.config.settings import EngineSettings
from admirror.engine.label_locator import find_by_label
from admirror.engine.models import ContainerMatch
from admirror.rules.config_validator import ensure_valid
from admirror.rules.models import (
    AttributeRule,
    ContainerRule,
    CssRule,
    LabelLedRule,
    RuleSet,
)
from admirror.telemetry.errors import ErrorCode, SelectorError, emit_structured_error
from admirror.tree.adapter import TreeNode

logger = logging.getLogger(__name__)

PHASE = "container"


def execute_container_rule(
    rule: ContainerRule,
    root: TreeNode,
    settings: EngineSettings | None = None,
) -> list[ContainerMatch]:
    """Run a single rule without negative filters. May raise ``RuleError``."""
    scope = root
    if rule.scope_selector:
        found = root.select_one(rule.scope_selector)
        if found is None:
            emit_structured_error(
                logger,
                code=ErrorCode.SCOPE_NOT_FOUND,
                message=f"Scope selector matched nothing: {rule.scope_selector}",
                suppressed=True,
                rule_id=rule.id,
                phase=PHASE,
            )
            return []
        scope = found

    if isinstance(rule, LabelLedRule):
        return find_by_label(rule, scope, settings)

    if isinstance(rule, (CssRule, AttributeRule)):
        return [
            ContainerMatch(node=node, rule_id=rule.id, rule_type=rule.rule_type, score=rule.score)
            for node in scope.select(rule.selector)
        ]

    raise TypeError(f"Unknown container rule: {type(rule).__name__}")


def _filter_matches(selector: str, rule_id: str, check: Callable[[str], bool]) -> bool:
    """Evaluate one filter check, skipping the filter if its selector is bad."""
    try:
        return check(selector)
    except SelectorError as e:
        emit_structured_error(
            logger,
            code=ErrorCode.INVALID_SELECTOR,
            message=str(e),
            suppressed=True,
            rule_id=rule_id,
            phase=PHASE,
            details={"selector": selector},
        )
        return False


def is_excluded(node: TreeNode, rule: ContainerRule) -> bool:
    """True if any of the rule's negative filters rejects the node."""
    for selector in rule.exclude_selectors:
        if _filter_matches(
            selector,
            rule.id,
            lambda s: node.matches(s) or node.select_one(s) is not None,
        ):
            return True

    if rule.exclude_if_contains:
        text = node.text
        if any(needle and needle in text for needle in rule.exclude_if_contains):
            return True

    for selector in rule.exclude_ancestors:
        if _filter_matches(
            selector,
            rule.id,
            lambda s: any(ancestor.matches(s) for ancestor in node.ancestors()),
        ):
            return True

    return False


def apply_negative_filters(matches: list[ContainerMatch], rule: ContainerRule) -> list[ContainerMatch]:
    if not (rule.exclude_selectors or rule.exclude_if_contains or rule.exclude_ancestors):
        return matches
    kept = [match for match in matches if not is_excluded(match.node, rule)]
    if len(kept) != len(matches):
        logger.debug("Rule %s: negative filters dropped %d matches", rule.id, len(matches) - len(kept))
    return kept


def deduplicate(matches: list[ContainerMatch]) -> list[ContainerMatch]:
    """One match per node, keeping the highest score. Earlier matches win ties."""
    best: dict[int, ContainerMatch] = {}
    order: list[int] = []
    for match in matches:
        key = id(match.node)
        existing = best.get(key)
        if existing is None:
            order.append(key)
            best[key] = match
        elif match.score > existing.score:
            best[key] = match
    return [best[key] for key in order]


def compute_threshold(
    matches: list[ContainerMatch],
    rule_set: RuleSet,
    settings: EngineSettings | None = None,
) -> float:
    """Resolve the score a container needs to survive phase 1."""
    settings = settings or EngineSettings()
    if rule_set.container_score_threshold is not None:
        return rule_set.container_score_threshold
    if not rule_set.adaptive_threshold:
        return settings.default_container_threshold
    if not matches:
        return settings.default_container_threshold

    scores = [match.score for match in matches]
    max_score = max(scores)
    avg_score = sum(scores) / len(scores)
    min_confidence = rule_set.min_confidence

    threshold = max_score * 0.8
    if avg_score < threshold * 0.7:
        # Widely spread scores: fall back towards the average.
        threshold = max(avg_score * 1.1, min_confidence)
    threshold = max(threshold, min_confidence)
    return min(threshold, settings.adaptive_max_threshold)


def find_containers(
    rule_set: RuleSet,
    root: TreeNode,
    settings: EngineSettings | None = None,
) -> list[ContainerMatch]:
    """Find candidate ad containers in a document.

    Pure with respect to the tree: running it twice on the same document
    yields the same nodes in the same order.

    Raises:
        ConfigError: the rule set fails config validation.
    """
    ensure_valid(rule_set)
    settings = settings or EngineSettings()
    collected: list[ContainerMatch] = []

    for rule in rule_set.container_rules:
        try:
            matches = execute_container_rule(rule, root, settings)
        except Exception as e:
            emit_structured_error(
                logger,
                code=ErrorCode.RULE_EXECUTION_FAILED,
                message=str(e),
                suppressed=True,
                rule_id=rule.id,
                phase=PHASE,
                details={"rule_type": rule.rule_type.value, "target": rule.describe()},
            )
            continue

        matches = apply_negative_filters(matches, rule)
        logger.debug("Container rule %s matched %d nodes", rule.id, len(matches))
        collected.extend(matches)

    unique = deduplicate(collected)
    threshold = compute_threshold(unique, rule_set, settings)
    accepted = [match for match in unique if match.score >= threshold]
    logger.debug(
        "Container pass: %d unique matches, %d at or above threshold %.3f",
        len(unique),
        len(accepted),
        threshold,
    )
    return accepted
