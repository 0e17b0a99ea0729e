"""Tests for contract classification."""

import pytest

from entityintel.intelligence.classifier import (
    DEFAULT_CATEGORY,
    MAX_CONFIDENCE,
    classify,
    classify_all_pending,
    classify_contract,
    count_unclassified,
    get_category_distribution,
    get_contract_classification,
)


@pytest.mark.parametrize("text,naics", [
    ("", None),
    ("cybersecurity network monitoring services", None),
    ("cloud software data network cyber digital system database web application "
     "security training quality testing integration api support analytics", "541512"),
    ("construction of a new hospital facility", "236220"),
    ("misc", "999999"),
])
def test_confidence_is_bounded(text, naics):
    result = classify(text, naics_code=naics)
    assert 0 <= result.confidence <= MAX_CONFIDENCE


def test_cybersecurity_description():
    result = classify("cybersecurity network monitoring services")
    assert result.primary_category == "IT Services"
    assert "Cybersecurity" in result.capabilities


def test_naics_boost_dominates_empty_text():
    result = classify("", naics_code="236220")
    assert result.primary_category == "Construction"
    assert result.confidence == 0.6


def test_empty_input_defaults():
    result = classify("")
    assert result.primary_category == DEFAULT_CATEGORY
    assert result.secondary_categories == []
    assert result.capabilities == []
    assert result.confidence == 0.3


def test_secondary_categories_are_capped():
    text = "software hospital construction consulting manufacturing freight military research school waste"
    result = classify(text)
    assert len(result.secondary_categories) <= 3
    assert result.primary_category not in result.secondary_categories


def test_classify_is_deterministic():
    text = "environmental remediation and waste cleanup"
    assert classify(text, "562910") == classify(text, "562910")


def test_classify_all_pending(make_contract):
    make_contract(description="cloud software modernization", naics_code="541512")
    make_contract(description="hospital renovation", naics_code="236220")
    make_contract(description=None)

    result = classify_all_pending(batch_size=2)
    assert result == {"classified": 3, "errors": 0}
    assert count_unclassified() == 0

    again = classify_all_pending()
    assert again == {"classified": 0, "errors": 0}


def test_classify_all_pending_respects_limit(make_contract):
    for _ in range(5):
        make_contract(description="software")

    result = classify_all_pending(batch_size=10, limit=2)
    assert result["classified"] == 2
    assert count_unclassified() == 3


def test_stored_classification_and_distribution(make_contract):
    it_id = make_contract(description="software development", naics_code="518210")
    make_contract(description="building construction", naics_code="236220")
    make_contract(description="bridge construction repair", naics_code="237310")

    classify_all_pending()

    stored = get_contract_classification(it_id)
    assert stored.primary_category == "IT Services"
    assert "Software Development" in stored.capabilities

    distribution = get_category_distribution()
    assert distribution == {"IT Services": 1, "Construction": 2}


def test_classify_contract_upserts(make_contract):
    contract_id = make_contract(description="laboratory research study")

    first = classify_contract(contract_id)
    second = classify_contract(contract_id)

    assert first == second
    assert first.primary_category == "Research"
    assert get_category_distribution() == {"Research": 1}


def test_classify_missing_contract(db):
    assert classify_contract(12345) is None
    assert get_contract_classification(12345) is None
