"""Tests for rule-set wire models."""

import pytest
from pydantic import ValidationError

from admirror.rules.models import (
    AdField,
    AttributeRule,
    ContainerRuleType,
    CssRule,
    FieldRule,
    LabelLedRule,
    MinTextLengthRule,
    RuleSet,
    Transform,
    UrlValidRule,
    ValidatorType,
    _ContainerRuleBase,
)


def _document(**overrides):
    document = {
        "id": "twitter",
        "version": "2.1.0",
        "containerRules": [
            {"id": "css", "type": "css", "selector": "article", "score": 0.8},
            {
                "id": "label",
                "type": "label-led",
                "labelTexts": ["Promoted"],
                "containerSelector": "article",
                "score": 0.9,
            },
            {"id": "attr", "type": "attribute", "attributeKey": "data-ad", "score": 0.7},
        ],
        "fieldRules": [
            {"field": "advertiser", "selector": "a", "score": 1.0},
            {"field": "destinationUrl", "selector": "a", "attr": "href", "score": 0.9, "transform": "url-clean"},
        ],
        "validators": [
            {"type": "required-field", "field": "advertiser", "weight": 0.5},
            {"type": "url-valid", "weight": 0.5},
        ],
    }
    document.update(overrides)
    return document


class TestRuleSetParsing:
    def test_parses_tagged_container_rules(self):
        rule_set = RuleSet.model_validate(_document())
        css, label, attr = rule_set.container_rules
        assert isinstance(css, CssRule)
        assert isinstance(label, LabelLedRule)
        assert isinstance(attr, AttributeRule)
        assert label.rule_type is ContainerRuleType.LABEL_LED
        assert label.container_selector == "article"

    def test_parses_validators(self):
        rule_set = RuleSet.model_validate(_document())
        assert isinstance(rule_set.validators[1], UrlValidRule)
        assert rule_set.validators[0].validator_type is ValidatorType.REQUIRED_FIELD

    def test_unknown_container_type_rejected(self):
        document = _document(containerRules=[{"id": "x", "type": "xpath", "selector": "//a", "score": 1}])
        with pytest.raises(ValidationError):
            RuleSet.model_validate(document)

    def test_unknown_transform_rejected(self):
        document = _document(
            fieldRules=[{"field": "body", "selector": "p", "score": 1.0, "transform": "uppercase"}]
        )
        with pytest.raises(ValidationError):
            RuleSet.model_validate(document)

    def test_min_text_length_requires_positive_length(self):
        with pytest.raises(ValidationError):
            MinTextLengthRule(field=AdField.BODY, min_length=0, weight=0.2)

    def test_platform_defaults_to_id(self):
        rule_set = RuleSet.model_validate(_document())
        assert rule_set.platform == "twitter"

    def test_id_defaults_to_platform(self):
        document = _document(platform="reddit")
        del document["id"]
        assert RuleSet.model_validate(document).id == "reddit"

    def test_min_confidence_default(self):
        assert RuleSet.model_validate(_document()).min_confidence == 0.5

    def test_wire_round_trip_uses_camel_case(self):
        wire = RuleSet.model_validate(_document()).to_wire()
        assert "containerRules" in wire
        assert wire["containerRules"][1]["labelTexts"] == ["Promoted"]
        assert wire["fieldRules"][1]["transform"] == "url-clean"
        assert RuleSet.model_validate(wire) == RuleSet.model_validate(_document())

    def test_rule_set_is_read_only(self):
        rule_set = RuleSet.model_validate(_document())
        with pytest.raises(ValidationError):
            rule_set.min_confidence = 0.9


class TestFieldRule:
    def test_default_id(self):
        rule = FieldRule.model_validate({"field": "headline", "selector": "h3", "score": 1.0})
        assert rule.id == "headline@h3"

    def test_explicit_id_kept(self):
        rule = FieldRule(id="title", field=AdField.HEADLINE, selector="h3", score=1.0)
        assert rule.id == "title"

    def test_transform_parsed(self):
        rule = FieldRule.model_validate({"field": "cta", "selector": "b", "score": 1, "transform": "lowercase"})
        assert rule.transform is Transform.LOWERCASE

    def test_fields_with_extractors(self):
        rule_set = RuleSet.model_validate(_document())
        assert rule_set.fields_with_extractors() == {AdField.ADVERTISER, AdField.DESTINATION_URL}


class TestAttributeRule:
    def test_presence_selector(self):
        rule = AttributeRule(id="a", attribute_key="data-ad", score=1.0)
        assert rule.selector == "[data-ad]"

    def test_value_selector_is_quoted(self):
        rule = AttributeRule(id="a", attribute_key="data-testid", attribute_value='say "hi"', score=1.0)
        assert rule.selector == '[data-testid="say \\"hi\\""]'

    def test_describe(self):
        rule = LabelLedRule(id="l", label_texts=["Promoted", "Ad"], score=1.0)
        assert rule.describe() == "Promoted, Ad"

    def test_every_rule_type_describes_its_target(self):
        assert CssRule(id="c", selector="article", score=1.0).describe() == "article"
        assert AttributeRule(id="a", attribute_key="data-ad", score=1.0).describe() == "[data-ad]"

    def test_rule_base_is_abstract(self):
        with pytest.raises(TypeError):
            _ContainerRuleBase(id="x", score=1.0)
