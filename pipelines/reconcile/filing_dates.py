"""Apply month-precision funding dates from high-confidence filing matches."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from app.config import settings
from app.models.company import CompanyRecord, normalize_funding_date
from app.models.filing import FilingMatch, FilingMatchStore
from pipelines.io.record_store import (
    RecordStore,
    RecordStoreError,
    load_filing_matches,
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

logger = logging.getLogger("pipelines.reconcile.filing_dates")

MODULE_NAME = "reconcile_filing_dates"
REQUIRED_CONFIDENCE = "high"
COUNTER_LABELS = (
    ("dates_added", "Dates added"),
    ("dates_updated", "Dates updated"),
    ("kept", "Same or newer"),
    ("ineligible", "Ineligible matches"),
    ("skipped", "Skipped"),
)


def filing_month(match: FilingMatch) -> str | None:
    """Most recent filing date truncated to ``YYYY-MM``."""
    latest = match.latest_filing_date
    if not latest:
        return None
    try:
        return normalize_funding_date(latest[:7])
    except ValueError:
        logger.warning("Ignoring malformed filing date %r for %s", latest, match.entity_name)
        return None


def merge_filing_date(record: CompanyRecord | None, slug: str, match: FilingMatch) -> MergeDecision:
    if record is None:
        return MergeDecision(
            slug=slug,
            record=None,
            lines=(ChangeLogLine(ChangeAction.SKIP, slug, "Not found in record store"),),
            counters={"skipped": 1},
        )
    candidate = filing_month(match)
    if match.confidence != REQUIRED_CONFIDENCE or not candidate:
        return MergeDecision(slug=slug, record=record, counters={"ineligible": 1})

    existing = record.last_funding_date
    if existing and existing >= candidate:
        return MergeDecision(
            slug=slug,
            record=record,
            lines=(ChangeLogLine(ChangeAction.DATE_KEPT, slug, f"{existing} (existing is same or newer)"),),
            counters={"kept": 1},
        )
    action, counter = (ChangeAction.DATE_UPDATED, "dates_updated") if existing else (ChangeAction.DATE_ADDED, "dates_added")
    return MergeDecision(
        slug=slug,
        record=record.model_copy(update={"last_funding_date": candidate}),
        lines=(ChangeLogLine(action, slug, f"{existing or '(none)'} -> {candidate}  ({match.entity_name or '?'})"),),
        counters={counter: 1},
        changed=True,
    )


def reconcile_filing_dates(store: RecordStore, matches: FilingMatchStore) -> ReconciliationReport:
    report = ReconciliationReport(
        title="Filing Date Report",
        source=str(matches.metadata.get("source") or "filing-matches"),
        entries=len(matches.matches),
        counter_labels=COUNTER_LABELS,
    )
    for slug, match in matches.matches.items():
        report.add(merge_filing_date(report.current(store, slug), slug, match))
    return report


def run_pipeline(records_path: Path, matches_path: Path, *, apply: bool = False) -> ReconciliationReport:
    try:
        store = load_record_store(records_path)
        matches = load_filing_matches(matches_path)
    except RecordStoreError as exc:
        raise ReconcileError(f"Unable to load filing match inputs: {exc}", code=exc.code) from exc

    report = reconcile_filing_dates(store, matches)
    finalize_run(store, report, apply=apply, module=MODULE_NAME)
    logger.info(
        "Filing date summary added=%s updated=%s kept=%s ineligible=%s skipped=%s",
        report.counters["dates_added"],
        report.counters["dates_updated"],
        report.counters["kept"],
        report.counters["ineligible"],
        report.counters["skipped"],
    )
    return report


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Write last_funding_date from high-confidence filing matches (dry run by default).",
    )
    parser.add_argument("--records", type=Path, default=Path(settings.records_path), help="Record store JSON.")
    parser.add_argument(
        "--matches",
        type=Path,
        default=Path(settings.filing_matches_path),
        help="Filing match store JSON (missing file = no matches).",
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
        report = run_pipeline(args.records, args.matches, apply=args.apply)
    except ReconcileError as exc:
        logger.error("Filing date reconcile failed: %s (code=%s)", exc, exc.code)
        print(f"\nAborted: {exc} (code={exc.code}). No changes written.")
        return 1
    except Exception as exc:  # pragma: no cover - safeguard
        logger.exception("Unexpected filing date reconcile failure: %s", exc)
        return 1
    print(report.render(applied=args.apply))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
