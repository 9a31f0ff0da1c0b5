"""Government-filing search results and entity matches."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from app.models.company import FundingAmount

Confidence = Literal["high", "medium", "low", "none"]


def _normalize_confidence(value: object) -> str:
    if value is None:
        return "none"
    return str(value).strip().lower() or "none"


class FilingResult(BaseModel):
    """Funding amount located for a slug.

    ``funding_found`` of None means the slug was searched and nothing was
    found; a slug with no FilingResult at all has not been searched yet.
    """

    funding_found: FundingAmount | None = None
    source: str = ""
    confidence: Confidence = "none"
    notes: str | None = None
    searched_at: str | None = None
    edgar_data: dict[str, Any] | None = None

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> str:
        return _normalize_confidence(value)


class FilingResultStore(BaseModel):
    """``{metadata: {...}, companies: {slug: FilingResult}}``; one entry per slug."""

    metadata: dict[str, Any] = Field(default_factory=dict)
    companies: dict[str, FilingResult] = Field(default_factory=dict)

    def get(self, slug: str) -> FilingResult | None:
        return self.companies.get(slug)

    def count_from_source(self, source: str) -> int:
        return sum(1 for result in self.companies.values() if result.source == source)

    def count_found(self) -> int:
        return sum(1 for result in self.companies.values() if result.funding_found)


class FilingEntry(BaseModel):
    date: str | None = None
    accession: str | None = None

    model_config = ConfigDict(frozen=True, extra="allow")


class FilingMatch(BaseModel):
    """Filing entity matched to a slug by the upstream scraper's name search."""

    entity_name: str | None = None
    cik: str | int | None = None
    confidence: Confidence = "none"
    filings: list[FilingEntry] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> str:
        return _normalize_confidence(value)

    @property
    def latest_filing_date(self) -> str | None:
        """Date of the first listed filing; the scraper lists newest first."""
        for filing in self.filings:
            if filing.date:
                return filing.date
        return None


class FilingMatchStore(BaseModel):
    metadata: dict[str, Any] = Field(default_factory=dict)
    matches: dict[str, FilingMatch] = Field(default_factory=dict)
    unmatched: list[Any] = Field(default_factory=list)

    def get(self, slug: str) -> FilingMatch | None:
        return self.matches.get(slug)
