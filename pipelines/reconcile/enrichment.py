"""Apply web-sourced enrichment observations (dates + funding) to the record store."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from app.config import settings
from app.models.company import CompanyRecord
from app.models.observation import Observation, ObservationBatch
from pipelines.io.record_store import (
    RecordStore,
    RecordStoreError,
    load_observation_batch,
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

logger = logging.getLogger("pipelines.reconcile.enrichment")

MODULE_NAME = "reconcile_enrichment"
COUNTER_LABELS = (
    ("dates_added", "Dates added"),
    ("dates_updated", "Dates updated"),
    ("funding_updated", "Funding updated"),
    ("skipped", "Skipped"),
)


def merge_observation(record: CompanyRecord | None, observation: Observation) -> MergeDecision:
    """Decide how one observation changes one record, without touching the store."""
    slug = observation.slug
    if record is None:
        return MergeDecision(
            slug=slug,
            record=None,
            lines=(ChangeLogLine(ChangeAction.SKIP, slug, "Not found in record store"),),
            counters={"skipped": 1},
        )

    lines: list[ChangeLogLine] = []
    counters: dict[str, int] = {}
    updates: dict[str, object] = {}
    note = f"  ({observation.note})" if observation.note else ""

    candidate_date = observation.last_funding_date
    if candidate_date:
        existing = record.last_funding_date
        if not existing:
            lines.append(ChangeLogLine(ChangeAction.DATE_ADDED, slug, f"{candidate_date}{note}"))
            updates["last_funding_date"] = candidate_date
            counters["dates_added"] = 1
        elif candidate_date > existing:
            lines.append(ChangeLogLine(ChangeAction.DATE_UPDATED, slug, f"{existing} -> {candidate_date}{note}"))
            updates["last_funding_date"] = candidate_date
            counters["dates_updated"] = 1
        else:
            lines.append(ChangeLogLine(ChangeAction.DATE_KEPT, slug, f"{existing} (existing is same or newer)"))

    candidate_funding = observation.funding
    if candidate_funding and candidate_funding != record.funding:
        previous = record.funding or "none"
        lines.append(ChangeLogLine(ChangeAction.FUNDING_CHANGED, slug, f"{previous} -> {candidate_funding}{note}"))
        updates["funding"] = candidate_funding
        counters["funding_updated"] = 1

    if not updates:
        return MergeDecision(slug=slug, record=record, lines=tuple(lines), counters=counters)
    return MergeDecision(
        slug=slug,
        record=record.model_copy(update=updates),
        lines=tuple(lines),
        counters=counters,
        changed=True,
    )


def reconcile_enrichment(store: RecordStore, batch: ObservationBatch) -> ReconciliationReport:
    """Fold every observation of ``batch`` into a report of pending updates."""
    report = ReconciliationReport(
        title="Web Enrichment Report",
        source=batch.metadata.source,
        entries=len(batch.enrichments),
        counter_labels=COUNTER_LABELS,
    )
    for observation in batch.enrichments:
        decision = merge_observation(report.current(store, observation.slug), observation)
        report.add(decision)
    return report


def run_pipeline(
    records_path: Path,
    enrichment_path: Path,
    *,
    apply: bool = False,
) -> ReconciliationReport:
    """Load both inputs, reconcile, and write back only when ``apply`` is set."""
    try:
        store = load_record_store(records_path)
        batch = load_observation_batch(enrichment_path)
    except RecordStoreError as exc:
        raise ReconcileError(f"Unable to load enrichment inputs: {exc}", code=exc.code) from exc

    logger.info(
        "Enrichment reconcile start. source=%s entries=%s records=%s apply=%s",
        batch.metadata.source,
        len(batch.enrichments),
        len(store),
        apply,
    )
    report = reconcile_enrichment(store, batch)
    finalize_run(store, report, apply=apply, module=MODULE_NAME)
    logger.info(
        "Enrichment summary dates_added=%s dates_updated=%s funding_updated=%s skipped=%s",
        report.counters["dates_added"],
        report.counters["dates_updated"],
        report.counters["funding_updated"],
        report.counters["skipped"],
    )
    return report


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Apply web-sourced enrichment dates/funding to the record store (dry run by default).",
    )
    parser.add_argument("--records", type=Path, default=Path(settings.records_path), help="Record store JSON.")
    parser.add_argument(
        "--enrichment",
        type=Path,
        default=Path(settings.enrichment_path),
        help="Web enrichment batch JSON (missing file = empty batch).",
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
        report = run_pipeline(args.records, args.enrichment, apply=args.apply)
    except ReconcileError as exc:
        logger.error("Enrichment reconcile failed: %s (code=%s)", exc, exc.code)
        print(f"\nAborted: {exc} (code={exc.code}). No changes written.")
        return 1
    except Exception as exc:  # pragma: no cover - safeguard
        logger.exception("Unexpected enrichment reconcile failure: %s", exc)
        return 1
    print(report.render(applied=args.apply))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
