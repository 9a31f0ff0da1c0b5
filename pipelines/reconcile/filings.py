"""Apply filing-derived funding amounts to the record store behind a noise threshold."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from app.config import settings
from app.models.company import CompanyRecord
from app.models.filing import FilingResult, FilingResultStore
from pipelines.io.record_store import (
    RecordStore,
    RecordStoreError,
    load_filing_results,
    load_record_store,
)
from pipelines.reconcile import (
    ChangeAction,
    ChangeLogLine,
    MergeDecision,
    ReconcileError,
    ReconciliationReport,
    finalize_run,
)

logger = logging.getLogger("pipelines.reconcile.filings")

MODULE_NAME = "reconcile_filings"
COUNTER_LABELS = (
    ("new", "New funding"),
    ("updated", "Updated funding"),
    ("unchanged", "Unchanged"),
    ("not_found", "Not in record store"),
    ("not_searched", "Not in results"),
)


def format_millions(amount: float | None) -> str:
    if not amount:
        return "N/A"
    return f"${amount / 1_000_000:.1f}M"


def exceeds_threshold(current: float, candidate: float, threshold: float) -> bool:
    """True when ``candidate`` differs from ``current`` by more than ``threshold`` (relative)."""
    return abs(current - candidate) / current > threshold


def merge_filing_result(
    record: CompanyRecord | None,
    slug: str,
    result: FilingResult,
    *,
    threshold: float = 0.05,
) -> MergeDecision:
    """Decide whether a filing result replaces a record's funding amount."""
    if record is None:
        return MergeDecision(
            slug=slug,
            record=None,
            lines=(ChangeLogLine(ChangeAction.NOT_FOUND, slug, "Filing result has no matching record"),),
            counters={"not_found": 1},
        )

    candidate = result.funding_found
    if candidate is None:
        return MergeDecision(
            slug=slug,
            record=record,
            lines=(ChangeLogLine(ChangeAction.FUNDING_NULL, slug, f"searched, nothing found ({result.source or 'unknown'})"),),
            counters={"unchanged": 1},
        )

    current = record.funding
    if not current:
        if candidate > 0:
            return _adopt(record, candidate, ChangeAction.FUNDING_NEW, counter="new", source=result.source)
        return _keep(record, slug, f"{format_millions(current)} (filing amount not positive)")

    if exceeds_threshold(current, candidate, threshold):
        return _adopt(record, candidate, ChangeAction.FUNDING_UPDATED, counter="updated", source=result.source)
    return _keep(record, slug, f"{format_millions(current)} ~ {format_millions(candidate)} (within {threshold:.0%})")


def _adopt(
    record: CompanyRecord,
    candidate: float,
    action: ChangeAction,
    *,
    counter: str,
    source: str,
) -> MergeDecision:
    detail = f"{format_millions(record.funding)} -> {format_millions(candidate)}  ({record.name}; {source or 'unknown'})"
    return MergeDecision(
        slug=record.slug,
        record=record.model_copy(update={"funding": candidate}),
        lines=(ChangeLogLine(action, record.slug, detail),),
        counters={counter: 1},
        changed=True,
    )


def _keep(record: CompanyRecord, slug: str, detail: str) -> MergeDecision:
    return MergeDecision(
        slug=slug,
        record=record,
        lines=(ChangeLogLine(ChangeAction.FUNDING_KEPT, slug, detail),),
        counters={"unchanged": 1},
    )


def reconcile_filings(
    store: RecordStore,
    results: FilingResultStore,
    *,
    threshold: float = 0.05,
) -> ReconciliationReport:
    report = ReconciliationReport(
        title="Filing Funding Report",
        source=str(results.metadata.get("source") or "filing-results"),
        entries=len(results.companies),
        counter_labels=COUNTER_LABELS,
    )
    for slug, result in results.companies.items():
        decision = merge_filing_result(report.current(store, slug), slug, result, threshold=threshold)
        report.add(decision)
    report.counters["not_searched"] = sum(1 for record in store if record.slug not in results.companies)
    return report


def run_pipeline(
    records_path: Path,
    results_path: Path,
    *,
    apply: bool = False,
    threshold: float | None = None,
) -> ReconciliationReport:
    threshold = settings.filing_update_threshold if threshold is None else threshold
    if threshold < 0:
        raise ReconcileError(f"Threshold must be non-negative (got {threshold}).", code="E_THRESHOLD_INVALID")
    try:
        store = load_record_store(records_path)
        results = load_filing_results(results_path)
    except RecordStoreError as exc:
        raise ReconcileError(f"Unable to load filing inputs: {exc}", code=exc.code) from exc

    logger.info(
        "Filing reconcile start. results=%s records=%s threshold=%s apply=%s",
        len(results.companies),
        len(store),
        threshold,
        apply,
    )
    report = reconcile_filings(store, results, threshold=threshold)
    finalize_run(store, report, apply=apply, module=MODULE_NAME)
    logger.info(
        "Filing summary new=%s updated=%s unchanged=%s not_found=%s not_searched=%s",
        report.counters["new"],
        report.counters["updated"],
        report.counters["unchanged"],
        report.counters["not_found"],
        report.counters["not_searched"],
    )
    return report


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Apply filing-derived funding amounts to the record store (dry run by default).",
    )
    parser.add_argument("--records", type=Path, default=Path(settings.records_path), help="Record store JSON.")
    parser.add_argument(
        "--results",
        type=Path,
        default=Path(settings.filing_results_path),
        help="Filing result store JSON (missing file = no results).",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Relative difference required to replace existing funding (default from settings).",
    )
    parser.add_argument("--apply", action="store_true", help="Write changes back to the record store.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        report = run_pipeline(args.records, args.results, apply=args.apply, threshold=args.threshold)
    except ReconcileError as exc:
        logger.error("Filing reconcile failed: %s (code=%s)", exc, exc.code)
        print(f"\nAborted: {exc} (code={exc.code}). No changes written.")
        return 1
    except Exception as exc:  # pragma: no cover - safeguard
        logger.exception("Unexpected filing reconcile failure: %s", exc)
        return 1
    print(report.render(applied=args.apply))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
