"""Candidate funding observations produced by upstream enrichment batches."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from app.models.company import FundingAmount, normalize_funding_date


class Observation(BaseModel):
    """Dated funding event for one known slug, with a provenance note."""

    slug: str = Field(..., min_length=1)
    last_funding_date: str | None = None
    funding: FundingAmount | None = None
    note: str = ""

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("last_funding_date", mode="before")
    @classmethod
    def _validate_date(cls, value: object) -> str | None:
        return normalize_funding_date(value)

    @field_validator("note", mode="before")
    @classmethod
    def _coerce_note(cls, value: object) -> str:
        return "" if value is None else str(value)


class BatchMetadata(BaseModel):
    source: str = "unknown"

    model_config = ConfigDict(extra="allow")


class ObservationBatch(BaseModel):
    """Web-enrichment batch: ``{metadata: {source}, enrichments: [...]}``."""

    metadata: BatchMetadata = Field(default_factory=BatchMetadata)
    enrichments: list[Observation] = Field(default_factory=list)

    @classmethod
    def empty(cls, source: str = "none") -> ObservationBatch:
        return cls(metadata=BatchMetadata(source=source), enrichments=[])

    def summary(self) -> dict[str, Any]:
        return {"source": self.metadata.source, "entries": len(self.enrichments)}
