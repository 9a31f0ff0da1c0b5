"""Render coverage gaps as a markdown outreach report or a flat CSV export."""

from __future__ import annotations

import argparse
import csv
import io
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path

from app.config import settings
from pipelines.gaps.coverage import CoverageGaps, FilingTag, GapEntry, classify_records
from pipelines.gaps.rules import GapRules, GapRulesError, load_rules
from pipelines.io.record_store import (
    RecordStoreError,
    load_filing_matches,
    load_filing_results,
    load_record_store,
)
from tools.telemetry import get_telemetry

logger = logging.getLogger("pipelines.gaps.report")

MODULE_NAME = "coverage_gaps"
REPORT_MODES = ("report", "export")
EXPORT_GAP_TYPES = {"missing_funding": "no_funding", "missing_date_only": "no_date"}


class GapReportError(RuntimeError):
    """Domain error for gap report generation."""

    def __init__(self, message: str, code: str = "GAP_REPORT_ERROR") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ExportRow:
    entry: GapEntry
    gap_type: str


@dataclass(frozen=True)
class ReportResult:
    mode: str
    output_path: Path
    gaps: CoverageGaps
    rows_written: int


def format_funding(amount: float | None) -> str:
    if not amount:
        return "N/A"
    if amount >= 1_000_000_000:
        return f"${amount / 1_000_000_000:.1f}B"
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:.0f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:.0f}K"
    return f"${amount}"


def search_links(name: str, rules: GapRules) -> list[str]:
    """Markdown links to each lookup service for ``name``."""
    return [f"[Search]({service.url_for(name)})" for service in rules.lookup_services]


def _pct(count: int, total: int) -> str:
    if not total:
        return "0.0%"
    return f"{count / total * 100:.1f}%"


def _cell(value: object) -> str:
    return str(value).replace("|", "\\|")


def _table(
    headers: Sequence[str],
    right_aligned: set[str],
    rows: Sequence[Sequence[object]],
    rules: GapRules,
    entries: Sequence[GapEntry],
) -> list[str]:
    service_names = [service.name for service in rules.lookup_services]
    columns = ["#", *headers, *service_names]
    lines = [
        "| " + " | ".join(columns) + " |",
        "|" + "|".join(
            "--:" if column == "#" or column in right_aligned else "-" * max(3, len(column) + 2)
            for column in columns
        ) + "|",
    ]
    for idx, (values, entry) in enumerate(zip(rows, entries, strict=True), start=1):
        cells = [str(idx), *(_cell(value) for value in values), *search_links(entry.name, rules)]
        lines.append("| " + " | ".join(cells) + " |")
    lines.append("")
    return lines


def render_markdown(
    gaps: CoverageGaps,
    rules: GapRules,
    *,
    generated_on: date | None = None,
    priority_limit: int = 30,
) -> str:
    generated_on = generated_on or datetime.now(UTC).date()
    summary = gaps.summary()
    total = gaps.total
    home = rules.home_jurisdiction

    md: list[str] = ["# Funding Data Gaps Report", f"Generated: {generated_on.isoformat()}", ""]
    md += ["## Summary", "", "| Metric | Count | % |", "|--------|------:|--:|"]
    metrics = (
        ("Total companies", total),
        ("With funding amount", summary["with_funding"]),
        ("With last_funding_date", summary["with_date"]),
        ("Filing matches", gaps.filing_matches),
        ("Filing results on file", gaps.filing_results),
        ("Filing results from scraper", gaps.filing_source_results),
        ("**Missing funding**", summary["missing_funding"]),
        ("**Missing date only**", summary["missing_date_only"]),
        ("Fully covered", summary["fully_covered"]),
    )
    for label, count in metrics:
        shown = f"**{count}**" if label.startswith("**") else str(count)
        percent = "100%" if label == "Total companies" else _pct(count, total)
        md.append(f"| {label} | {shown} | {percent} |")
    md.append("")

    misses = gaps.tagged(FilingTag.FILING_MISS)
    if misses:
        md += [
            f"## Missing Funding: {home} Companies (No Filing Match)",
            "",
            f"These companies are {home}-based but no filing was found for them. "
            "They may not have filed, or the name did not match.",
            "",
        ]
        md += _table(
            ["Company", "Segment", "Stage"],
            set(),
            [(e.name, e.segment, e.funding_stage) for e in misses],
            rules,
            misses,
        )

    international = gaps.tagged(FilingTag.INTERNATIONAL)
    if international:
        md += [
            "## Missing Funding: International Companies",
            "",
            f"The filings source only covers {home} entities. These companies need manual enrichment.",
            "",
        ]
        md += _table(
            ["Company", "Country", "Segment", "Stage"],
            set(),
            [(e.name, e.country, e.segment, e.funding_stage) for e in international],
            rules,
            international,
        )

    low_confidence = gaps.tagged(FilingTag.LOW_CONFIDENCE)
    if low_confidence:
        md += [
            "## Low Confidence Filing Matches",
            "",
            "These companies had a possible filing match but with low confidence. Verify manually.",
            "",
        ]
        md += _table(
            ["Company", "Filing Entity", "Segment"],
            set(),
            [(e.name, e.filing_entity or "?", e.segment) for e in low_confidence],
            rules,
            low_confidence,
        )

    no_date = gaps.missing_date_only
    if no_date:
        md += [
            "## Missing Last Funding Date",
            "",
            "These companies have funding amounts but no `last_funding_date`. Look up their most recent round date.",
            "",
        ]
        md += _table(
            ["Company", "Funding", "Country"],
            {"Funding"},
            [(e.name, format_funding(e.funding), e.country) for e in no_date],
            rules,
            no_date,
        )

    priority = gaps.priority(priority_limit)
    if priority:
        md += [
            "## Priority: Top Funded Companies Missing Date",
            "",
            "These are the highest-funded companies still missing a `last_funding_date`.",
            "",
        ]
        md += _table(
            ["Company", "Funding", "Country"],
            {"Funding"},
            [(e.name, format_funding(e.funding), e.country) for e in priority],
            rules,
            priority,
        )

    return "\n".join(md)


def build_export_rows(gaps: CoverageGaps) -> list[ExportRow]:
    """Incomplete records tagged by bucket, deduplicated by slug (first seen wins)."""
    combined = [
        *(ExportRow(entry, EXPORT_GAP_TYPES["missing_funding"]) for entry in gaps.missing_funding),
        *(ExportRow(entry, EXPORT_GAP_TYPES["missing_date_only"]) for entry in gaps.missing_date_only),
    ]
    seen: set[str] = set()
    deduped: list[ExportRow] = []
    for row in combined:
        if row.entry.slug in seen:
            continue
        seen.add(row.entry.slug)
        deduped.append(row)
    return deduped


def export_fieldnames(rules: GapRules) -> list[str]:
    return [
        "slug",
        "name",
        "country",
        "segment",
        "funding_stage",
        "has_funding",
        "has_date",
        "gap_type",
        "filing_confidence",
        *(f"{service.name.lower()}_url" for service in rules.lookup_services),
    ]


def render_csv(rows: Sequence[ExportRow], rules: GapRules) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=export_fieldnames(rules), lineterminator="\n")
    writer.writeheader()
    for row in rows:
        entry = row.entry
        record = {
            "slug": entry.slug,
            "name": entry.name,
            "country": entry.country,
            "segment": entry.segment,
            "funding_stage": entry.funding_stage,
            "has_funding": "yes" if entry.has_funding else "no",
            "has_date": "yes" if entry.has_date else "no",
            "gap_type": row.gap_type,
            "filing_confidence": entry.filing_confidence,
        }
        for service in rules.lookup_services:
            record[f"{service.name.lower()}_url"] = service.url_for(entry.name)
        writer.writerow(record)
    return buffer.getvalue()


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    temp_path.write_text(content, encoding="utf-8")
    temp_path.replace(path)


def run_report(
    mode: str,
    *,
    records_path: Path,
    results_path: Path,
    matches_path: Path,
    output_path: Path,
    rules_path: Path | None = None,
    generated_on: date | None = None,
    priority_limit: int | None = None,
) -> ReportResult:
    """Classify the store and write either the markdown report or the CSV export."""
    if mode not in REPORT_MODES:
        raise GapReportError(f"Unsupported mode '{mode}'; expected one of {REPORT_MODES}.", code="E_MODE_UNSUPPORTED")
    try:
        rules = load_rules(rules_path)
    except GapRulesError as exc:
        raise GapReportError(f"Unable to load gap rules: {exc}", code=exc.code) from exc
    try:
        store = load_record_store(records_path)
        results = load_filing_results(results_path)
        matches = load_filing_matches(matches_path)
    except RecordStoreError as exc:
        raise GapReportError(f"Unable to load gap inputs: {exc}", code=exc.code) from exc

    gaps = classify_records(
        store,
        results,
        rules,
        matches=matches,
        filing_source_label=settings.filing_source_label,
    )
    limit = settings.gap_priority_limit if priority_limit is None else priority_limit
    if mode == "report":
        _write_text(output_path, render_markdown(gaps, rules, generated_on=generated_on, priority_limit=limit))
        rows_written = len(gaps.missing_funding) + len(gaps.missing_date_only)
    else:
        rows = build_export_rows(gaps)
        _write_text(output_path, render_csv(rows, rules))
        rows_written = len(rows)

    get_telemetry().emit_counters(MODULE_NAME, gaps.summary(), mode=mode, output=str(output_path))
    logger.info("Gap %s written path=%s rows=%s", mode, output_path, rows_written)
    return ReportResult(mode=mode, output_path=output_path, gaps=gaps, rows_written=rows_written)


def render_summary(result: ReportResult) -> str:
    summary = result.gaps.summary()
    heading = "Report generated" if result.mode == "report" else "CSV exported"
    lines = [
        f"\n{heading}: {result.output_path}",
        "",
        "Gap Summary:",
        f"  Missing funding:         {summary['missing_funding']}",
        f"    No filing match:       {summary[FilingTag.FILING_MISS.value]}",
        f"    International:         {summary[FilingTag.INTERNATIONAL.value]}",
        f"    Low confidence:        {summary[FilingTag.LOW_CONFIDENCE.value]}",
        f"  Missing date only:       {summary['missing_date_only']}",
        f"  Fully covered:           {summary['fully_covered']}",
    ]
    if result.mode == "export":
        lines.append(f"  Export rows:             {result.rows_written}")
    return "\n".join(lines)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Funding coverage gap analysis.")
    parser.add_argument("mode", choices=REPORT_MODES, help="report = markdown outreach report, export = CSV.")
    parser.add_argument("--records", type=Path, default=Path(settings.records_path), help="Record store JSON.")
    parser.add_argument("--results", type=Path, default=Path(settings.filing_results_path), help="Filing result store JSON.")
    parser.add_argument("--matches", type=Path, default=Path(settings.filing_matches_path), help="Filing match store JSON.")
    parser.add_argument("--rules", type=Path, default=None, help="Gap rules YAML (default configs/gap_rules.v1.yaml).")
    parser.add_argument("--output", type=Path, default=None, help="Output path (default from settings per mode).")
    parser.add_argument("--limit", type=int, default=None, help="Rows in the priority view.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    default_output = settings.gap_report_path if args.mode == "report" else settings.gap_export_path
    try:
        result = run_report(
            args.mode,
            records_path=args.records,
            results_path=args.results,
            matches_path=args.matches,
            output_path=args.output or Path(default_output),
            rules_path=args.rules,
            priority_limit=args.limit,
        )
    except GapReportError as exc:
        logger.error("Gap analysis failed: %s (code=%s)", exc, exc.code)
        print(f"\nAborted: {exc} (code={exc.code}). No report written.")
        return 1
    except Exception as exc:  # pragma: no cover - safeguard
        logger.exception("Unexpected gap analysis failure: %s", exc)
        return 1
    print(render_summary(result))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
