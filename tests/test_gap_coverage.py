import pytest

from app.models.company import CompanyRecord
from app.models.filing import FilingMatchStore, FilingResultStore
from pipelines.gaps import coverage
from pipelines.gaps.coverage import FilingTag, FullyCovered, MissingDateOnly, MissingFunding
from pipelines.gaps.rules import DEFAULT_RULES_PATH, load_rules


@pytest.fixture(scope="module")
def rules():
    return load_rules(DEFAULT_RULES_PATH)


def _records() -> list[CompanyRecord]:
    return [
        CompanyRecord(slug="covered", name="Covered", funding=10, last_funding_date="2024-01"),
        CompanyRecord(slug="intl", name="Intl", hq_country="GB"),
        CompanyRecord(slug="intl-low", name="Intl Low", hq_country="DE"),
        CompanyRecord(slug="low", name="Low", hq_country="US"),
        CompanyRecord(slug="miss", name="Miss"),
        CompanyRecord(slug="null-result", name="Null Result", hq_country="USA"),
        CompanyRecord(slug="zero", name="Zero", funding=0, last_funding_date="2023-02-01"),
        CompanyRecord(slug="small", name="Small", funding=2_000_000),
        CompanyRecord(slug="big", name="Big", funding=90_000_000, hq_country="FR"),
    ]


def _results() -> FilingResultStore:
    return FilingResultStore.model_validate(
        {
            "companies": {
                "intl-low": {"funding_found": None, "confidence": "low"},
                "low": {"funding_found": None, "confidence": "low", "source": "sec-edgar-form-d"},
                "null-result": {"funding_found": None, "confidence": "high", "source": "sec-edgar-form-d"},
            }
        }
    )


def test_every_record_lands_in_exactly_one_bucket(rules):
    gaps = coverage.classify_records(_records(), _results(), rules)

    buckets = [gaps.fully_covered, gaps.missing_funding, gaps.missing_date_only]
    slugs = [entry.slug for bucket in buckets for entry in bucket]
    assert sorted(slugs) == sorted(record.slug for record in _records())
    assert len(slugs) == len(set(slugs))


def test_classification_states(rules):
    gaps = coverage.classify_records(_records(), _results(), rules)
    states = {entry.slug: entry.state for entry in gaps.entries}

    assert states["covered"] == FullyCovered()
    assert states["intl"] == MissingFunding(FilingTag.INTERNATIONAL)
    assert states["intl-low"] == MissingFunding(FilingTag.INTERNATIONAL)
    assert states["low"] == MissingFunding(FilingTag.LOW_CONFIDENCE)
    assert states["miss"] == MissingFunding(FilingTag.FILING_MISS)
    assert states["null-result"] == MissingFunding(None)
    assert states["zero"] == MissingFunding(FilingTag.FILING_MISS)
    assert states["small"] == MissingDateOnly(funding=2_000_000)
    assert states["big"] == MissingDateOnly(funding=90_000_000)


def test_secondary_tags_only_within_missing_funding(rules):
    gaps = coverage.classify_records(_records(), _results(), rules)

    for entry in gaps.fully_covered + gaps.missing_date_only:
        assert entry.tag is None


def test_null_filing_result_is_not_a_filing_miss(rules):
    gaps = coverage.classify_records(_records(), _results(), rules)

    misses = {entry.slug for entry in gaps.tagged(FilingTag.FILING_MISS)}
    assert "null-result" not in misses
    assert misses == {"miss", "zero"}


def test_priority_sorted_by_funding_and_limited(rules):
    gaps = coverage.classify_records(_records(), _results(), rules)

    assert [entry.slug for entry in gaps.priority()] == ["big", "small"]
    assert [entry.slug for entry in gaps.priority(limit=1)] == ["big"]


def test_summary_counts(rules):
    gaps = coverage.classify_records(
        _records(),
        _results(),
        rules,
        matches=FilingMatchStore.model_validate({"matches": {"low": {"entity_name": "LOW LLC", "confidence": "low"}}}),
        filing_source_label="sec-edgar-form-d",
    )
    summary = gaps.summary()

    assert summary["total"] == 9
    assert summary["fully_covered"] == 1
    assert summary["missing_funding"] == 6
    assert summary["missing_date_only"] == 2
    assert summary[FilingTag.INTERNATIONAL.value] == 2
    assert summary[FilingTag.LOW_CONFIDENCE.value] == 1
    assert summary[FilingTag.FILING_MISS.value] == 2
    assert gaps.filing_results == 3
    assert gaps.filing_source_results == 2
    assert gaps.filing_matches == 1
    low = next(entry for entry in gaps.entries if entry.slug == "low")
    assert low.filing_entity == "LOW LLC"
    assert low.filing_confidence == "low"


def test_display_fields_default(rules):
    entry = coverage.classify_record(CompanyRecord(slug="x", name="X"), None, None, rules)

    assert entry.country == "??"
    assert entry.filing_confidence == "none"
    assert entry.segment == ""
    assert entry.funding is None
