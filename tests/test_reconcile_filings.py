from pathlib import Path

import pytest

from app.models.company import CompanyRecord
from app.models.filing import FilingResult
from pipelines.reconcile import ChangeAction, ReconcileError
from pipelines.reconcile import filings
from tests.utils import make_record, read_rows, rows_by_slug, write_records, write_results


def _record(funding: int | None) -> CompanyRecord:
    return CompanyRecord(slug="acme", name="Acme", funding=funding)


def _result(funding_found: int | None, confidence: str = "high") -> FilingResult:
    return FilingResult(funding_found=funding_found, source="sec-edgar-form-d", confidence=confidence)


@pytest.mark.parametrize(
    ("candidate", "expected_changed"),
    [
        (1_030_000, False),
        (970_000, False),
        (1_050_000, False),
        (1_100_000, True),
        (900_000, True),
    ],
)
def test_threshold_gates_existing_funding(candidate: int, expected_changed: bool):
    decision = filings.merge_filing_result(_record(1_000_000), "acme", _result(candidate))

    assert decision.changed is expected_changed
    assert decision.record.funding == (candidate if expected_changed else 1_000_000)


def test_custom_threshold_is_respected():
    decision = filings.merge_filing_result(_record(1_000_000), "acme", _result(1_030_000), threshold=0.01)

    assert decision.changed
    assert decision.counters == {"updated": 1}


def test_new_funding_adopted_when_record_has_none():
    decision = filings.merge_filing_result(_record(None), "acme", _result(2_500_000))

    assert decision.record.funding == 2_500_000
    assert decision.counters == {"new": 1}
    assert decision.lines[0].action is ChangeAction.FUNDING_NEW


def test_zero_funding_counts_as_missing():
    decision = filings.merge_filing_result(_record(0), "acme", _result(400_000))

    assert decision.counters == {"new": 1}


def test_null_result_never_changes_funding():
    with_funding = filings.merge_filing_result(_record(1_000), "acme", _result(None))
    without_funding = filings.merge_filing_result(_record(None), "acme", _result(None))

    for decision in (with_funding, without_funding):
        assert not decision.changed
        assert decision.counters == {"unchanged": 1}
        assert decision.lines[0].action is ChangeAction.FUNDING_NULL


def test_unknown_slug_counted_not_found():
    decision = filings.merge_filing_result(None, "ghost", _result(5_000_000))

    assert decision.record is None
    assert decision.counters == {"not_found": 1}


def test_end_to_end_beta_scenario(tmp_path: Path):
    records_path = write_records(tmp_path, [make_record("beta", funding=5_000_000)])
    results_path = write_results(
        tmp_path,
        {"beta": {"funding_found": 5_400_000, "source": "sec-edgar-form-d", "confidence": "high"}},
    )

    report = filings.run_pipeline(records_path, results_path, apply=True)

    assert rows_by_slug(records_path)["beta"]["funding"] == 5_400_000
    assert report.counters["updated"] == 1


def test_run_pipeline_counts_and_idempotence(tmp_path: Path):
    records_path = write_records(
        tmp_path,
        [
            make_record("alpha"),
            make_record("beta", funding=1_000_000),
            make_record("gamma", funding=1_000_000),
            make_record("delta", funding=3),
            make_record("unsearched"),
        ],
    )
    results_path = write_results(
        tmp_path,
        {
            "alpha": {"funding_found": 2_000_000, "source": "manual", "confidence": "medium"},
            "beta": {"funding_found": 1_030_000, "source": "sec-edgar-form-d", "confidence": "high"},
            "gamma": {"funding_found": 1_100_000, "source": "sec-edgar-form-d", "confidence": "high"},
            "delta": {"funding_found": None, "source": "web", "confidence": "low"},
            "ghost": {"funding_found": 9_000_000, "source": "web", "confidence": "high"},
        },
    )

    first = filings.run_pipeline(records_path, results_path, apply=True)
    snapshot = records_path.read_bytes()
    second = filings.run_pipeline(records_path, results_path, apply=True)

    assert first.counters["new"] == 1
    assert first.counters["updated"] == 1
    assert first.counters["unchanged"] == 2
    assert first.counters["not_found"] == 1
    assert first.counters["not_searched"] == 1
    assert second.counters["new"] == 0
    assert second.counters["updated"] == 0
    assert second.mutations == 0
    assert records_path.read_bytes() == snapshot
    assert [row["slug"] for row in read_rows(records_path)] == ["alpha", "beta", "gamma", "delta", "unsearched"]
    assert rows_by_slug(records_path)["delta"]["funding"] == 3


def test_preview_leaves_store_untouched(tmp_path: Path):
    records_path = write_records(tmp_path, [make_record("alpha")])
    before = records_path.read_bytes()
    results_path = write_results(tmp_path, {"alpha": {"funding_found": 10, "confidence": "high"}})

    report = filings.run_pipeline(records_path, results_path)

    assert report.counters["new"] == 1
    assert records_path.read_bytes() == before


def test_negative_threshold_rejected(tmp_path: Path, missing_path: Path):
    records_path = write_records(tmp_path, [make_record("alpha")])

    with pytest.raises(ReconcileError) as excinfo:
        filings.run_pipeline(records_path, missing_path, threshold=-0.1)
    assert excinfo.value.code == "E_THRESHOLD_INVALID"


def test_cli_apply_writes_and_reports(tmp_path: Path, capsys: pytest.CaptureFixture[str]):
    records_path = write_records(tmp_path, [make_record("alpha")])
    results_path = write_results(tmp_path, {"alpha": {"funding_found": 12_000_000, "confidence": "high"}})

    exit_code = filings.main(["--records", str(records_path), "--results", str(results_path), "--apply"])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "Filing Funding Report" in output
    assert "Changes applied: 1 record(s) written." in output
    assert rows_by_slug(records_path)["alpha"]["funding"] == 12_000_000


def test_fractional_filing_amounts_are_reconciled(tmp_path: Path):
    records_path = write_records(
        tmp_path,
        [
            make_record("beta", funding=5_400_000),
            make_record("gamma", funding=1_000_000),
            make_record("delta", funding=2_000_000),
        ],
    )
    results_path = write_results(
        tmp_path,
        {
            "beta": {"funding_found": 5_832_000, "confidence": "high"},
            "gamma": {"funding_found": 1_234_567.5, "confidence": "high"},
            "delta": {"funding_found": 2_010_000.5, "confidence": "high"},
        },
    )

    report = filings.run_pipeline(records_path, results_path, apply=True)

    rows = rows_by_slug(records_path)
    assert rows["beta"]["funding"] == 5_832_000
    assert rows["gamma"]["funding"] == 1_234_567.5
    assert rows["delta"]["funding"] == 2_000_000
    assert report.counters["updated"] == 2
    assert report.counters["unchanged"] == 1
