"""Test helpers that materialize record stores and sources on disk."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any


def make_record(
    slug: str,
    *,
    name: str | None = None,
    funding: float | None = None,
    last_funding_date: str | None = None,
    hq_country: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a record-store row; optional keys are omitted when None."""
    row: dict[str, Any] = {"slug": slug, "name": name or slug.replace("-", " ").title()}
    if funding is not None:
        row["funding"] = funding
    if last_funding_date is not None:
        row["last_funding_date"] = last_funding_date
    if hq_country is not None:
        row["hq_country"] = hq_country
    row.update(extra)
    return row


def write_records(tmp_path: Path, rows: Sequence[dict[str, Any]], name: str = "projects.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(list(rows), indent=2), encoding="utf-8")
    return path


def write_enrichment(
    tmp_path: Path,
    enrichments: Sequence[dict[str, Any]],
    *,
    source: str = "web-search-test",
) -> Path:
    path = tmp_path / "web-enrichment.json"
    payload = {"metadata": {"source": source}, "enrichments": list(enrichments)}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def write_results(tmp_path: Path, companies: dict[str, dict[str, Any]], **metadata: Any) -> Path:
    path = tmp_path / "results.json"
    payload = {"metadata": dict(metadata), "companies": companies}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def write_matches(tmp_path: Path, matches: dict[str, dict[str, Any]]) -> Path:
    path = tmp_path / "edgar-matches.json"
    payload = {"metadata": {"searched": len(matches)}, "matches": matches, "unmatched": []}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def read_rows(path: Path) -> list[dict[str, Any]]:
    return json.loads(path.read_text(encoding="utf-8"))


def rows_by_slug(path: Path) -> dict[str, dict[str, Any]]:
    return {row["slug"]: row for row in read_rows(path)}
