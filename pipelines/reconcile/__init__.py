"""Shared decision/report types for record store reconciliation runs."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.models.company import CompanyRecord
from pipelines.io.record_store import RecordStore, save_record_store
from tools.telemetry import get_telemetry

logger = logging.getLogger("pipelines.reconcile")

SLUG_WIDTH = 30


class ReconcileError(RuntimeError):
    """Domain exception for reconciliation runs."""

    def __init__(self, message: str, code: str = "RECONCILE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ChangeAction(str, Enum):
    """Label printed at the start of each change-log line."""

    SKIP = "SKIP"
    DATE_ADDED = "+DATE"
    DATE_UPDATED = "^DATE"
    DATE_KEPT = "=DATE"
    FUNDING_CHANGED = "$FUND"
    FUNDING_NEW = "NEW"
    FUNDING_UPDATED = "UPDATE"
    FUNDING_KEPT = "=FUND"
    FUNDING_NULL = "NULL"
    NOT_FOUND = "MISS"


@dataclass(frozen=True)
class ChangeLogLine:
    action: ChangeAction
    slug: str
    detail: str = ""

    def render(self) -> str:
        return f"  {self.action.value:<6} {self.slug:<{SLUG_WIDTH}} {self.detail}".rstrip()


@dataclass(frozen=True)
class MergeDecision:
    """Outcome of merging one candidate into one record.

    ``record`` is the record after the merge (unchanged when nothing was
    adopted) and None when the slug is not in the store.
    """

    slug: str
    record: CompanyRecord | None
    lines: tuple[ChangeLogLine, ...] = ()
    counters: Mapping[str, int] = field(default_factory=dict)
    changed: bool = False


@dataclass
class ReconciliationReport:
    """Aggregated decisions for one source against the record store."""

    title: str
    source: str
    entries: int
    counter_labels: Sequence[tuple[str, str]]
    counters: Counter[str] = field(default_factory=Counter)
    lines: list[ChangeLogLine] = field(default_factory=list)
    updated: dict[str, CompanyRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for key, _ in self.counter_labels:
            self.counters.setdefault(key, 0)

    def add(self, decision: MergeDecision) -> None:
        self.lines.extend(decision.lines)
        self.counters.update(decision.counters)
        if decision.changed and decision.record is not None:
            self.updated[decision.slug] = decision.record

    def current(self, store: RecordStore, slug: str) -> CompanyRecord | None:
        """Latest view of ``slug``, including decisions made earlier in this run."""
        return self.updated.get(slug) or store.get(slug)

    def discard_unchanged(self, store: RecordStore) -> None:
        """Drop pending updates whose owned fields ended up equal to the stored record."""
        self.updated = {
            slug: record
            for slug, record in self.updated.items()
            if record.owned_values() != store.get(slug).owned_values()
        }

    @property
    def mutations(self) -> int:
        return len(self.updated)

    def summary(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "entries": self.entries,
            "mutations": self.mutations,
            **{key: self.counters[key] for key, _ in self.counter_labels},
        }

    def render(self, *, applied: bool, apply_hint: str = "--apply") -> str:
        width = max([len("Entries:"), len("Source:"), *(len(label) + 1 for _, label in self.counter_labels)]) + 2
        out = [f"\n=== {self.title} ===\n"]
        out.append(f"{'Source:':<{width}}{self.source}")
        out.append(f"{'Entries:':<{width}}{self.entries}")
        for key, label in self.counter_labels:
            out.append(f"{label + ':':<{width}}{self.counters[key]}")
        out.append("\n--- Changes ---")
        out.extend(line.render() for line in self.lines)
        if applied:
            out.append(f"\nChanges applied: {self.mutations} record(s) written.")
        else:
            out.append(f"\nDry run. Re-run with {apply_hint} to write changes.")
        return "\n".join(out)


def finalize_run(store: RecordStore, report: ReconciliationReport, *, apply: bool, module: str) -> str | None:
    """Write back pending updates when applying, then emit the run summary.

    Returns the sha256 of the written store, or None when nothing was written.
    """
    report.discard_unchanged(store)
    sha: str | None = None
    if apply and report.updated:
        changed = store.apply(report.updated.values())
        sha = save_record_store(store)
        logger.info("Applied %s change(s) to %s", changed, store.path)
    elif apply:
        logger.info("No changes to apply to %s", store.path)
    get_telemetry().emit_counters(
        module,
        {key: report.counters[key] for key, _ in report.counter_labels},
        source=report.source,
        applied=apply,
        mutations=report.mutations,
        sha256=sha,
    )
    return sha
