"""Merge a manually researched funding batch into the filing result store."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.config import settings
from app.models.filing import FilingResult, FilingResultStore
from pipelines.io.record_store import RecordStoreError, load_filing_results, save_filing_results
from tools.telemetry import get_telemetry

logger = logging.getLogger("tools.save_batch")

USAGE_EXAMPLE = '{"slug": {"funding_found": 123, "source": "...", "confidence": "high", "notes": "..."}}'


class BatchError(RuntimeError):
    """Raised when a manual batch cannot be parsed or merged."""

    def __init__(self, message: str, code: str = "BATCH_INVALID") -> None:
        super().__init__(message)
        self.code = code


def parse_batch(raw: str) -> dict[str, dict[str, Any]]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise BatchError(f"Batch is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping) or not payload:
        raise BatchError(f"Batch must be a non-empty object keyed by slug, e.g. {USAGE_EXAMPLE}")
    for slug, entry in payload.items():
        if not isinstance(entry, Mapping):
            raise BatchError(f"Batch entry for '{slug}' must be an object.")
    return {str(slug): dict(entry) for slug, entry in payload.items()}


def merge_batch(
    store: FilingResultStore,
    updates: Mapping[str, Mapping[str, Any]],
    *,
    now: datetime | None = None,
) -> FilingResultStore:
    """Return a new store with each slug in ``updates`` overwritten and timestamped."""
    searched_at = (now or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
    companies = dict(store.companies)
    for slug, entry in updates.items():
        try:
            companies[slug] = FilingResult.model_validate({**entry, "searched_at": searched_at})
        except ValidationError as exc:
            raise BatchError(f"Batch entry for '{slug}' is invalid: {exc}") from exc
    metadata = {
        **store.metadata,
        "searched": len(companies),
        "found": sum(1 for result in companies.values() if result.funding_found),
    }
    return FilingResultStore(metadata=metadata, companies=companies)


def save_batch(results_path: Path, updates: Mapping[str, Mapping[str, Any]], *, now: datetime | None = None) -> FilingResultStore:
    try:
        store = load_filing_results(results_path)
    except RecordStoreError as exc:
        raise BatchError(f"Unable to load filing results: {exc}", code=exc.code) from exc
    merged = merge_batch(store, updates, now=now)
    sha = save_filing_results(merged, results_path)
    get_telemetry().emit(
        "save_batch",
        "summary",
        saved=len(updates),
        searched=merged.metadata["searched"],
        found=merged.metadata["found"],
        sha256=sha,
    )
    return merged


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Save manually researched funding results by slug.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--json", dest="inline", help=f"Inline batch, e.g. '{USAGE_EXAMPLE}'.")
    source.add_argument("--file", type=Path, help="Path to a JSON batch file.")
    parser.add_argument(
        "--results",
        type=Path,
        default=Path(settings.filing_results_path),
        help="Filing result store JSON to update.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    try:
        raw = args.file.read_text(encoding="utf-8") if args.file else args.inline
        updates = parse_batch(raw)
        merged = save_batch(args.results, updates)
    except FileNotFoundError as exc:
        logger.error("INPUT_READ_ERROR: %s", exc)
        return 1
    except BatchError as exc:
        logger.error("Save batch failed: %s (code=%s)", exc, exc.code)
        return 1
    print(f"Saved {len(updates)} results. Total searched: {merged.metadata['searched']}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
