"""Classify every company record into exactly one funding-coverage bucket."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from app.models.company import CompanyRecord
from app.models.filing import FilingMatch, FilingMatchStore, FilingResult, FilingResultStore
from pipelines.gaps.rules import GapRules

logger = logging.getLogger("pipelines.gaps.coverage")

UNKNOWN_COUNTRY = "??"


class FilingTag(str, Enum):
    """Why a record without funding was not covered by the filings source."""

    INTERNATIONAL = "international_no_filing_coverage"
    LOW_CONFIDENCE = "low_confidence_filing_match"
    FILING_MISS = "filing_miss"


@dataclass(frozen=True)
class FullyCovered:
    bucket: ClassVar[str] = "fully_covered"


@dataclass(frozen=True)
class MissingFunding:
    """No positive funding amount.

    ``tag`` is None for domestic records that were searched without a usable
    amount and without a low-confidence match.
    """

    tag: FilingTag | None
    bucket: ClassVar[str] = "missing_funding"


@dataclass(frozen=True)
class MissingDateOnly:
    funding: float
    bucket: ClassVar[str] = "missing_date_only"


Bucket = FullyCovered | MissingFunding | MissingDateOnly
BUCKET_NAMES = (FullyCovered.bucket, MissingFunding.bucket, MissingDateOnly.bucket)


@dataclass(frozen=True)
class GapEntry:
    """One record's coverage classification plus its outreach display fields."""

    slug: str
    name: str
    country: str
    segment: str
    funding_stage: str
    funding: float | None
    last_funding_date: str
    filing_confidence: str
    filing_entity: str | None
    state: Bucket

    @property
    def bucket(self) -> str:
        return self.state.bucket

    @property
    def has_funding(self) -> bool:
        return bool(self.funding and self.funding > 0)

    @property
    def has_date(self) -> bool:
        return bool(self.last_funding_date)

    @property
    def tag(self) -> FilingTag | None:
        return self.state.tag if isinstance(self.state, MissingFunding) else None


def classify_state(record: CompanyRecord, result: FilingResult | None, rules: GapRules) -> Bucket:
    if record.has_funding and record.has_date:
        return FullyCovered()
    if not record.has_funding:
        if not rules.is_domestic(record.hq_country):
            return MissingFunding(FilingTag.INTERNATIONAL)
        if result is not None and result.confidence == rules.low_confidence_label:
            return MissingFunding(FilingTag.LOW_CONFIDENCE)
        if result is None:
            return MissingFunding(FilingTag.FILING_MISS)
        return MissingFunding(None)
    return MissingDateOnly(funding=record.funding or 0)


def classify_record(
    record: CompanyRecord,
    result: FilingResult | None,
    match: FilingMatch | None,
    rules: GapRules,
) -> GapEntry:
    return GapEntry(
        slug=record.slug,
        name=record.name,
        country=(record.hq_country or "").strip() or UNKNOWN_COUNTRY,
        segment=record.segment or "",
        funding_stage=record.funding_stage or "",
        funding=record.funding or None,
        last_funding_date=record.last_funding_date or "",
        filing_confidence=result.confidence if result is not None else "none",
        filing_entity=match.entity_name if match is not None else None,
        state=classify_state(record, result, rules),
    )


@dataclass
class CoverageGaps:
    """Classified entries in record-store order plus source coverage counts."""

    entries: list[GapEntry]
    filing_results: int = 0
    filing_source_results: int = 0
    filing_matches: int = 0
    _by_bucket: dict[str, list[GapEntry]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._by_bucket = {name: [] for name in BUCKET_NAMES}
        for entry in self.entries:
            self._by_bucket[entry.bucket].append(entry)

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def fully_covered(self) -> list[GapEntry]:
        return self._by_bucket[FullyCovered.bucket]

    @property
    def missing_funding(self) -> list[GapEntry]:
        return self._by_bucket[MissingFunding.bucket]

    @property
    def missing_date_only(self) -> list[GapEntry]:
        return self._by_bucket[MissingDateOnly.bucket]

    def tagged(self, tag: FilingTag) -> list[GapEntry]:
        return [entry for entry in self.missing_funding if entry.tag is tag]

    def priority(self, limit: int = 30) -> list[GapEntry]:
        """Highest-funded records still missing a date, funding descending."""
        funded = [entry for entry in self.missing_date_only if entry.funding]
        return sorted(funded, key=lambda entry: entry.funding or 0, reverse=True)[:limit]

    def summary(self) -> dict[str, int]:
        tags = Counter(entry.tag.value for entry in self.missing_funding if entry.tag is not None)
        return {
            "total": self.total,
            "with_funding": sum(1 for entry in self.entries if entry.has_funding),
            "with_date": sum(1 for entry in self.entries if entry.has_date),
            "fully_covered": len(self.fully_covered),
            "missing_funding": len(self.missing_funding),
            "missing_date_only": len(self.missing_date_only),
            **{tag.value: tags.get(tag.value, 0) for tag in FilingTag},
        }


def classify_records(
    records: Iterable[CompanyRecord],
    results: FilingResultStore,
    rules: GapRules,
    *,
    matches: FilingMatchStore | None = None,
    filing_source_label: str | None = None,
) -> CoverageGaps:
    matches = matches or FilingMatchStore()
    entries = [
        classify_record(record, results.get(record.slug), matches.get(record.slug), rules)
        for record in records
    ]
    gaps = CoverageGaps(
        entries=entries,
        filing_results=len(results.companies),
        filing_source_results=results.count_from_source(filing_source_label) if filing_source_label else 0,
        filing_matches=len(matches.matches),
    )
    logger.info("Coverage classified %s", " ".join(f"{key}={value}" for key, value in gaps.summary().items()))
    return gaps
