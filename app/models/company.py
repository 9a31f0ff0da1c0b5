"""Domain models for canonical company records."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, NonNegativeFloat, NonNegativeInt, field_validator
from pydantic.config import ConfigDict

FUNDING_DATE_PATTERN = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")
OWNED_FIELDS = ("funding", "last_funding_date")

# Upstream scrapers emit parsed floats; integral JSON stays int, fractional stays float.
FundingAmount = NonNegativeInt | NonNegativeFloat


def normalize_funding_date(value: object) -> str | None:
    """Return a validated ``YYYY[-MM[-DD]]`` string, or None when blank."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("funding date must be a string.")
    text = value.strip()
    if not text:
        return None
    if not FUNDING_DATE_PATTERN.match(text):
        raise ValueError(f"funding date must be YYYY, YYYY-MM or YYYY-MM-DD (got {value!r}).")
    return text


class CompanyRecord(BaseModel):
    """One row of the canonical record store, keyed by slug."""

    slug: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    funding: FundingAmount | None = None
    last_funding_date: str | None = None
    hq_country: str | None = None
    funding_stage: str | None = None
    segment: str | None = None

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("last_funding_date", mode="before")
    @classmethod
    def _validate_date(cls, value: object) -> str | None:
        return normalize_funding_date(value)

    @property
    def has_funding(self) -> bool:
        return bool(self.funding and self.funding > 0)

    @property
    def has_date(self) -> bool:
        return bool(self.last_funding_date)

    def owned_values(self) -> dict[str, object]:
        """Fields written back by reconciliation runs."""
        return {field: getattr(self, field) for field in OWNED_FIELDS}
