from __future__ import annotations

import pytest

from cognategov.errors import ConfigurationError
from cognategov.policies.conditions import (
    compile_expression,
    matches_auto_approve,
    predicate_from_config,
    structured_predicate,
)


def test_or_expression_matches_either_side() -> None:
    predicate = compile_expression("threat_score >= 0.8 OR anomaly_score >= 0.9")

    assert predicate({"threat_score": 0.85, "anomaly_score": 0.1})
    assert predicate({"threat_score": 0.1, "anomaly_score": 0.95})
    assert not predicate({"threat_score": 0.5, "anomaly_score": 0.5})


def test_and_binds_tighter_than_or() -> None:
    predicate = compile_expression("a = 1 OR b = 1 AND c = 1")

    assert predicate({"a": 1, "b": 0, "c": 0})
    assert not predicate({"a": 0, "b": 1, "c": 0})
    assert predicate({"a": 0, "b": 1, "c": 1})


def test_parentheses_override_precedence() -> None:
    predicate = compile_expression("(a = 1 OR b = 1) AND c = 1")
    assert not predicate({"a": 1, "b": 0, "c": 0})
    assert predicate({"a": 1, "b": 0, "c": 1})


def test_in_list_and_dotted_fields() -> None:
    predicate = compile_expression(
        "data.classification IN (financial, confidential) AND recipient.type = external"
    )

    assert predicate({"data": {"classification": "financial"}, "recipient": {"type": "external"}})
    assert not predicate({"data": {"classification": "public"}, "recipient": {"type": "external"}})
    assert not predicate({"data": {"classification": "financial"}, "recipient": {"type": "internal"}})


def test_not_in_named_collection() -> None:
    predicate = compile_expression("recipient.domain NOT IN approved_domains")
    context = {"approved_domains": ["example.com"], "recipient": {"domain": "evil.test"}}

    assert predicate(context)
    assert not predicate({**context, "recipient": {"domain": "example.com"}})


def test_absent_collection_has_no_members() -> None:
    context = {"recipient": {"domain": "example.com"}}

    assert not compile_expression("recipient.domain IN approved_domains")(context)
    assert compile_expression("recipient.domain NOT IN approved_domains")(context)


def test_missing_field_does_not_match_comparisons() -> None:
    predicate = compile_expression("amount > 100")
    assert not predicate({})


def test_exists_contains_and_matches() -> None:
    assert compile_expression("user.email EXISTS")({"user": {"email": "a@b.c"}})
    assert compile_expression("user.email NOT EXISTS")({"user": {}})
    assert compile_expression("subject CONTAINS 'invoice'")({"subject": "Your invoice is ready"})
    assert compile_expression("tags NOT CONTAINS vip")({"tags": ["new"]})
    assert compile_expression("code MATCHES '^A[0-9]+$'")({"code": "A123"})


def test_boolean_words_compare_loosely() -> None:
    predicate = compile_expression("data.contains_pii = true")
    assert predicate({"data": {"contains_pii": True}})
    assert predicate({"data": {"contains_pii": "TRUE"}})
    assert not predicate({"data": {"contains_pii": False}})


@pytest.mark.parametrize(
    "text",
    ["", "amount >", "amount > 5 AND", "(amount > 5", "amount ?? 5", "amount NOT MATCHES 'x'"],
)
def test_malformed_expressions_raise(text: str) -> None:
    with pytest.raises(ConfigurationError):
        compile_expression(text)


def test_structured_predicate_all_and_any() -> None:
    predicate = structured_predicate(
        {
            "all": [
                {"field": "amount", "operator": "greater_than", "value": 100},
                {"any": [{"field": "currency", "value": "USD"}, {"field": "currency", "value": "EUR"}]},
            ]
        }
    )

    assert predicate({"amount": 150, "currency": "EUR"})
    assert not predicate({"amount": 150, "currency": "GBP"})
    assert not predicate({"amount": 50, "currency": "USD"})


def test_structured_predicate_rejects_unknown_operator() -> None:
    with pytest.raises(ConfigurationError, match="unknown condition operator"):
        structured_predicate({"field": "a", "operator": "approximately", "value": 1})


def test_predicate_from_config_accepts_both_forms() -> None:
    by_text = predicate_from_config({"condition": "score > 3"})
    by_structure = predicate_from_config({"field": "score", "operator": "gt", "value": 3})
    assert by_text({"score": 4}) and by_structure({"score": 4})
    with pytest.raises(ConfigurationError):
        predicate_from_config({"condition": 5})


def test_auto_approve_matching() -> None:
    context = {"recipient": {"domain": "example.com"}, "amount": 20}

    assert matches_auto_approve({"recipient.domain": ["example.com", "example.org"]}, context)
    assert matches_auto_approve({"amount": "20"}, context)
    assert not matches_auto_approve({"recipient.domain": "other.com"}, context)
    assert not matches_auto_approve({"missing": 1}, context)
    assert not matches_auto_approve({}, context)
    assert matches_auto_approve({"field": "amount", "operator": "lt", "value": 50}, context)
