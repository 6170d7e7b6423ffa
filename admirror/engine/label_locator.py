"""Label-proximity locator — finds ad containers via their disclosure label.

Searches for "Promoted"/"Sponsored"-style text (and aria-labels), then
walks up from the label to the enclosing container. The label's nesting
depth inside the element that carried the match scales the confidence, so
a direct label hit outranks a label buried in unrelated nested content.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from admirror.config.settings import EngineSettings
from admirror.engine.models import ContainerMatch
from admirror.rules.models import ContainerRuleType, LabelLedRule
from admirror.tree.adapter import TreeNode

logger = logging.getLogger(__name__)

# Elements that commonly carry label text, possibly nested.
TEXT_HOST_TAGS = frozenset(
    {"span", "div", "p", "a", "button", "label", "h1", "h2", "h3", "h4", "h5", "h6"}
)
# Formatting tags scored by depth when nested in a text host.
INLINE_TAGS = frozenset(
    {"b", "i", "em", "strong", "small", "u", "mark", "sup", "sub", "abbr", "time"}
)
ARIA_SELECTOR = "[aria-label]"

DIRECT_LABEL_CONFIDENCE = 1.0
SHALLOW_LABEL_CONFIDENCE = 0.9  # label within 2 levels
NESTED_LABEL_CONFIDENCE = 0.8  # label within 4 levels
DEEP_LABEL_CONFIDENCE = 0.7

CONTAINER_TAGS = frozenset({"article", "section"})
CONTAINER_HINT_ATTRIBUTES = (
    "data-testid",
    "data-ad",
    "data-post",
    "data-item",
    "data-card",
    "role",
    "id",
)
MIN_CONTAINER_CHILDREN = 2
MAX_CONTAINER_CHILDREN = 20
_NON_CONTENT_TAGS = frozenset({"script", "style"})


@dataclass(frozen=True)
class LabelHit:
    """An element whose text contains a label, and where the label really sits."""

    element: TreeNode
    label_node: TreeNode
    confidence: float


def label_pattern(label_text: str) -> re.Pattern[str]:
    """Whole-word, case-insensitive pattern for a label text."""
    return re.compile(rf"\b{re.escape(label_text.strip())}\b", re.IGNORECASE)


def depth_confidence(depth: int) -> float:
    if depth <= 0:
        return DIRECT_LABEL_CONFIDENCE
    if depth <= 2:
        return SHALLOW_LABEL_CONFIDENCE
    if depth <= 4:
        return NESTED_LABEL_CONFIDENCE
    return DEEP_LABEL_CONFIDENCE


def find_label_node(element: TreeNode, pattern: re.Pattern[str]) -> tuple[TreeNode, int] | None:
    """Locate the shallowest node under ``element`` whose own text matches.

    Returns the node and its depth relative to ``element`` (0 = the element
    itself). Among nodes at the same depth the first in document order wins.
    """
    level = [element]
    depth = 0
    while level:
        for node in level:
            if pattern.search(node.direct_text):
                return node, depth
        level = [child for node in level for child in node.children]
        depth += 1
    return None


def find_label_hits(root: TreeNode, label_texts: list[str]) -> list[LabelHit]:
    """Scan the document for any of the label texts, in document order.

    Text hosts are matched on their full text and scored by how deep the
    label sits inside them. Every other element is a direct hit when the
    label is its own text (e.g. an ``<article>`` reading "Promoted"), except
    inline formatting that an enclosing host already located.
    """
    patterns = [label_pattern(text) for text in label_texts if text.strip()]
    hits: list[LabelHit] = []
    located_labels: set[int] = set()

    for element in root.descendants():
        tag = element.tag
        if tag in _NON_CONTENT_TAGS:
            continue
        if tag in TEXT_HOST_TAGS:
            text = element.text
            for pattern in patterns:
                if not pattern.search(text):
                    continue
                located = find_label_node(element, pattern)
                if located is None:
                    # Text only matches across node boundaries; treat as deep.
                    hits.append(LabelHit(element, element, DEEP_LABEL_CONFIDENCE))
                else:
                    label_node, depth = located
                    located_labels.add(id(label_node))
                    hits.append(LabelHit(element, label_node, depth_confidence(depth)))
                break
            continue
        if tag in INLINE_TAGS and id(element) in located_labels:
            continue
        direct = element.direct_text
        if any(pattern.search(direct) for pattern in patterns):
            hits.append(LabelHit(element, element, DIRECT_LABEL_CONFIDENCE))

    return hits


def is_likely_container(node: TreeNode) -> bool:
    """Heuristic: does this node look like a post/card boundary?"""
    tag = node.tag
    if tag in CONTAINER_TAGS:
        return True
    if tag != "div":
        return False
    if any(node.has_attribute(attr) for attr in CONTAINER_HINT_ATTRIBUTES):
        return True
    content_children = [child for child in node.children if child.tag not in _NON_CONTENT_TAGS]
    return MIN_CONTAINER_CHILDREN <= len(content_children) <= MAX_CONTAINER_CHILDREN


def find_container_from_label(
    label_node: TreeNode,
    container_selector: str | None,
    max_depth: int,
) -> TreeNode | None:
    """Walk up from a label node to its container.

    With an explicit selector this is a plain closest() lookup; otherwise at
    most ``max_depth`` nodes are tested against the container heuristic.
    """
    if container_selector:
        return label_node.closest(container_selector)

    node: TreeNode | None = label_node
    depth = 0
    while node is not None and depth < max_depth:
        if not node.is_document and is_likely_container(node):
            return node
        node = node.parent
        depth += 1
    return None


def find_by_label(
    rule: LabelLedRule,
    root: TreeNode,
    settings: EngineSettings | None = None,
) -> list[ContainerMatch]:
    """Find containers for a label-led rule.

    Strategy 1 matches visible text; strategy 2 matches aria-label
    attributes at a slightly reduced score. Each container is reported once,
    with the best-scoring label that led to it.
    """
    settings = settings or EngineSettings()
    best: dict[int, ContainerMatch] = {}
    order: list[int] = []

    for hit in find_label_hits(root, rule.label_texts):
        container = find_container_from_label(
            hit.label_node, rule.container_selector, settings.label_max_depth
        )
        if container is None:
            continue
        key = id(container)
        score = rule.score * hit.confidence
        existing = best.get(key)
        if existing is None:
            order.append(key)
        elif score <= existing.score:
            continue
        best[key] = ContainerMatch(
            node=container,
            rule_id=rule.id,
            rule_type=ContainerRuleType.LABEL_LED,
            score=score,
            label_node=hit.label_node,
            label_confidence=hit.confidence,
        )

    text_matches = len(order)
    patterns = [label_pattern(text) for text in rule.label_texts if text.strip()]
    for element in root.select(ARIA_SELECTOR):
        aria_label = element.get_attribute("aria-label") or ""
        if not any(pattern.search(aria_label) for pattern in patterns):
            continue
        container = element.closest(rule.container_selector) if rule.container_selector else element
        if container is None or id(container) in best:
            continue
        best[id(container)] = ContainerMatch(
            node=container,
            rule_id=f"{rule.id}-aria",
            rule_type=ContainerRuleType.LABEL_LED,
            score=rule.score * settings.aria_score_factor,
            label_node=element,
            label_confidence=settings.aria_score_factor,
        )
        order.append(id(container))

    logger.debug(
        "Label rule %s matched %d containers (%d via text, %d via aria-label)",
        rule.id,
        len(order),
        text_matches,
        len(order) - text_matches,
    )
    return [best[key] for key in order]
