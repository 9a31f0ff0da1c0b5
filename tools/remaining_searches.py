"""List records that have not been searched for filing results yet."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from app.config import settings
from app.models.company import CompanyRecord
from app.models.filing import FilingResultStore
from pipelines.io.record_store import RecordStoreError, load_filing_results, load_record_store

logger = logging.getLogger("tools.remaining_searches")


@dataclass(frozen=True)
class RemainingSearches:
    searched: int
    remaining: list[CompanyRecord]

    def render(self, limit: int) -> str:
        lines = [f"{record.slug}|{record.name}|{record.funding or 0}" for record in self.remaining[:limit]]
        lines += ["---", f"Searched: {self.searched}", f"Remaining: {len(self.remaining)}"]
        return "\n".join(lines)


def find_remaining(records: Sequence[CompanyRecord], results: FilingResultStore) -> RemainingSearches:
    """Records with no filing result at all; a null result counts as searched."""
    searched = set(results.companies)
    return RemainingSearches(
        searched=len(searched),
        remaining=[record for record in records if record.slug not in searched],
    )


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List companies still awaiting a funding search.")
    parser.add_argument("--records", type=Path, default=Path(settings.records_path), help="Record store JSON.")
    parser.add_argument("--results", type=Path, default=Path(settings.filing_results_path), help="Filing result store JSON.")
    parser.add_argument("--limit", type=int, default=settings.remaining_search_limit, help="Rows to print.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    try:
        store = load_record_store(args.records)
        results = load_filing_results(args.results)
    except RecordStoreError as exc:
        logger.error("Remaining search listing failed: %s (code=%s)", exc, exc.code)
        return 1
    print(find_remaining(store.records, results).render(args.limit))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
