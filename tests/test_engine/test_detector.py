"""End-to-end tests for the detection pipeline."""

import pytest

from admirror.engine.detector import AdDetector, detect_ads, detect_placement, generate_debug_info
from admirror.metrics.collector import SelectorMetricsCollector
from admirror.rules.models import AdField, RuleSet, ValidatorType
from admirror.telemetry.errors import ConfigError
from admirror.tree.adapter import SoupTree

PROMOTED = """
<main>
  <article id="ad">
    <span>Promoted</span>
    <a class="author" href="/acme">Acme Corp</a>
    <p>Widgets for everyone</p>
  </article>
  <article id="organic">
    <a class="author" href="/friend">A Friend</a>
    <p>Just had lunch</p>
  </article>
</main>
"""

PROMOTED_WITHOUT_LINK = """
<main>
  <article id="ad">
    <span>Promoted</span>
    <p>Widgets for everyone</p>
  </article>
</main>
"""


@pytest.fixture
def rule_set():
    return RuleSet.model_validate(
        {
            "id": "social",
            "version": "1.0.0",
            "platform": "social",
            "containerRules": [
                {"id": "promoted-label", "type": "label-led", "labelTexts": ["Promoted"], "score": 0.9},
            ],
            "fieldRules": [
                {"id": "author", "field": "advertiser", "selector": "a.author", "score": 1.0},
                {"id": "author-href", "field": "advertiserHandle", "selector": "a.author", "attr": "href", "score": 1.0},
                {"id": "missing-title", "field": "headline", "selector": "h2", "score": 1.0},
                {"id": "body", "field": "body", "selector": "p", "score": 0.8},
                {"id": "link", "field": "destinationUrl", "selector": "a.out", "attr": "href", "score": 1.0},
            ],
            "validators": [{"type": "required-field", "field": "advertiser", "weight": 1.0}],
            "minConfidence": 0.5,
        }
    )


class TestScenarios:
    def test_promoted_container_with_advertiser(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        candidates = detect_ads(rule_set, root)
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.node.get_attribute("id") == "ad"
        assert candidate.fields.advertiser == "Acme Corp"
        assert candidate.fields.advertiser_handle == "/acme"
        assert candidate.validation.valid
        assert candidate.validation.confidence == 1.0
        assert candidate.container_match.rule_id == "promoted-label"
        assert candidate.platform == "social"

    def test_promoted_container_without_advertiser(self, rule_set):
        root = SoupTree.from_html(PROMOTED_WITHOUT_LINK).root
        assert detect_ads(rule_set, root) == []

    def test_label_as_direct_container_text(self, rule_set):
        html = '<main><article id="ad">Promoted <a class="author" href="/acme">Acme Corp</a></article></main>'
        candidates = detect_ads(rule_set, SoupTree.from_html(html).root)
        assert len(candidates) == 1
        assert candidates[0].node.get_attribute("id") == "ad"
        assert candidates[0].fields.advertiser == "Acme Corp"
        assert candidates[0].container_match.label_confidence == 1.0

    def test_field_extractions_reference_rules(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        candidate = detect_ads(rule_set, root)[0]
        by_field = {e.field: e.rule_id for e in candidate.field_extractions}
        assert by_field[AdField.ADVERTISER] == "author"
        assert AdField.HEADLINE not in by_field


class TestSeenSet:
    def test_seen_containers_skipped(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        seen = set()
        assert len(detect_ads(rule_set, root, seen=seen)) == 1
        assert root.select_one("#ad") in seen
        assert detect_ads(rule_set, root, seen=seen) == []

    def test_rejected_containers_are_marked_seen(self, rule_set):
        root = SoupTree.from_html(PROMOTED_WITHOUT_LINK).root
        seen = set()
        detect_ads(rule_set, root, seen=seen)
        assert root.select_one("#ad") in seen


class TestPlacement:
    @pytest.mark.parametrize(
        "platform, url, expected",
        [
            ("google", "https://www.google.com/", "search"),
            ("google", None, "search"),
            ("twitter", "https://x.com/search?q=widgets", "search"),
            ("twitter", "https://x.com/explore", "search"),
            ("twitter", "https://x.com/home", "feed"),
            ("twitter", None, "other"),
        ],
    )
    def test_detect_placement(self, platform, url, expected):
        assert detect_placement(platform, url) == expected

    def test_candidate_carries_page_context(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        candidate = detect_ads(rule_set, root, page_url="https://social.example/home")[0]
        assert candidate.page_url == "https://social.example/home"
        assert candidate.placement == "feed"


class TestRuleSetValidation:
    def test_detect_ads_refuses_invalid_rule_set(self, rule_set):
        broken = rule_set.model_copy(update={"min_confidence": -3})
        with pytest.raises(ConfigError):
            detect_ads(broken, SoupTree.from_html(PROMOTED).root)

    def test_debug_info_refuses_invalid_rule_set(self, rule_set):
        broken = RuleSet.model_validate({**rule_set.to_wire(), "fieldRules": []})
        root = SoupTree.from_html(PROMOTED).root
        with pytest.raises(ConfigError):
            generate_debug_info(root.select_one("#ad"), broken)

    def test_valid_rule_set_remembered_after_first_pass(self, rule_set, caplog):
        warned = RuleSet.model_validate({**rule_set.to_wire(), "version": ""})
        root = SoupTree.from_html(PROMOTED).root
        with caplog.at_level("WARNING"):
            detect_ads(warned, root)
            detect_ads(warned, root)
        warnings = [r for r in caplog.records if "Missing version" in r.getMessage()]
        assert len(warnings) == 1


class TestAdDetector:
    def test_rejects_invalid_rule_set(self, rule_set):
        broken = rule_set.model_copy(update={"min_confidence": 1.5})
        with pytest.raises(ConfigError) as exc_info:
            AdDetector(broken)
        assert not exc_info.value.result.valid

    def test_detect_records_metrics(self, rule_set):
        metrics = SelectorMetricsCollector()
        detector = AdDetector(rule_set, metrics=metrics)
        root = SoupTree.from_html(PROMOTED).root

        assert len(detector.detect(root)) == 1

        container = metrics.get_metric("promoted-label")
        assert container.rule_type == "container"
        assert container.times_matched == 1
        assert container.times_validated == 1
        assert container.average_confidence == 1.0

        missing = metrics.get_metric("missing-title")
        assert missing.times_matched == 1
        assert missing.times_validated == 0
        assert metrics.get_metric("author").success_rate == 1.0

    def test_detect_without_metrics(self, rule_set):
        detector = AdDetector(rule_set)
        assert detector.metrics is None
        assert len(detector.detect(SoupTree.from_html(PROMOTED).root)) == 1

    def test_find_containers(self, rule_set):
        detector = AdDetector(rule_set)
        matches = detector.find_containers(SoupTree.from_html(PROMOTED).root)
        assert [m.node.get_attribute("id") for m in matches] == ["ad"]


class TestDebugInfo:
    def test_accepted_container(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        info = AdDetector(rule_set).debug_info(root.select_one("#ad"))

        assert info.accepted
        assert info.overall_confidence == 1.0
        assert info.container_rules[0].rule_id == "promoted-label"
        assert info.container_rules[0].matched
        assert info.container_rules[0].score == pytest.approx(0.9)
        assert info.validation_details[0].validator is ValidatorType.REQUIRED_FIELD

        traces = {trace.field: trace for trace in info.field_attempts}
        assert traces[AdField.ADVERTISER].final_value == "Acme Corp"
        assert traces[AdField.HEADLINE].final_value is None
        assert traces[AdField.HEADLINE].attempts[0].found is False

    def test_unmatched_node(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        info = generate_debug_info(root.select_one("#organic"), rule_set)
        assert not info.container_rules[0].matched
        assert info.container_rules[0].score is None
        assert not info.accepted
        # Fields still extract from the node under inspection.
        assert info.overall_confidence == 1.0

    def test_serializes_camel_case(self, rule_set):
        root = SoupTree.from_html(PROMOTED).root
        payload = generate_debug_info(root.select_one("#ad"), rule_set).model_dump(by_alias=True)
        assert {"containerRules", "fieldAttempts", "validationDetails", "overallConfidence", "accepted"} <= set(payload)
        assert "ruleId" in payload["containerRules"][0]
