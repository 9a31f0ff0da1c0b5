"""Loading and write-back helpers for the canonical record store and its sources."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.models.company import OWNED_FIELDS, CompanyRecord
from app.models.filing import FilingMatchStore, FilingResultStore
from app.models.observation import ObservationBatch

logger = logging.getLogger("pipelines.io.record_store")


class RecordStoreError(RuntimeError):
    """Raised when a required input cannot be loaded or fails validation."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass
class RecordStore:
    """Ordered company rows plus their validated records.

    ``rows`` keeps the raw JSON objects so keys this engine does not own are
    written back untouched and in their original order.
    """

    path: Path
    rows: list[dict[str, Any]]
    records: list[CompanyRecord]
    _index: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._index = {record.slug: idx for idx, record in enumerate(self.records)}

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[CompanyRecord]:
        return iter(self.records)

    def __contains__(self, slug: object) -> bool:
        return slug in self._index

    def get(self, slug: str) -> CompanyRecord | None:
        idx = self._index.get(slug)
        return None if idx is None else self.records[idx]

    def apply(self, updated: Iterable[CompanyRecord]) -> int:
        """Copy owned fields of ``updated`` into the raw rows; return rows changed."""
        changed = 0
        for record in updated:
            idx = self._index.get(record.slug)
            if idx is None:
                raise RecordStoreError("E_UNKNOWN_SLUG", f"Cannot apply update for unknown slug '{record.slug}'.")
            current = self.records[idx]
            row = self.rows[idx]
            touched = False
            for name in OWNED_FIELDS:
                value = getattr(record, name)
                if getattr(current, name) != value:
                    row[name] = value
                    touched = True
            if touched:
                self.records[idx] = record
                changed += 1
        return changed


def load_record_store(path: Path) -> RecordStore:
    """Load and validate the record store; any defect is fatal."""
    path = path.expanduser()
    if not path.exists():
        raise RecordStoreError("E_STORE_MISSING", f"Record store not found: {path}")
    payload = _read_json(path, code="E_STORE_INVALID_JSON")
    if not isinstance(payload, list):
        raise RecordStoreError("E_SCHEMA_INVALID", f"{path} must contain a JSON array.")

    records: list[CompanyRecord] = []
    seen: set[str] = set()
    for idx, row in enumerate(payload):
        if not isinstance(row, dict):
            raise RecordStoreError("E_SCHEMA_INVALID", f"{path} entry {idx} is not an object.")
        try:
            record = CompanyRecord.model_validate(row)
        except ValidationError as exc:
            label = row.get("slug") or f"#{idx}"
            raise RecordStoreError("E_SCHEMA_INVALID", f"{path} entry {label} is invalid: {exc}") from exc
        if record.slug in seen:
            raise RecordStoreError("E_DUPLICATE_SLUG", f"{path} contains duplicate slug '{record.slug}'.")
        seen.add(record.slug)
        records.append(record)

    logger.info("Loaded record store path=%s records=%s", path, len(records))
    return RecordStore(path=path, rows=payload, records=records)


def save_record_store(store: RecordStore, path: Path | None = None) -> str:
    """Replace the store file in one step and return its sha256."""
    target = path or store.path
    return _atomic_write_json(target, store.rows)


def load_observation_batch(path: Path) -> ObservationBatch:
    """Load a web-enrichment batch; a missing file is an empty batch."""
    path = path.expanduser()
    if not path.exists():
        logger.info("Enrichment batch %s not found; treating as empty.", path)
        return ObservationBatch.empty()
    payload = _read_json(path, code="E_SOURCE_INVALID_JSON")
    try:
        return ObservationBatch.model_validate(payload)
    except ValidationError as exc:
        raise RecordStoreError("E_SOURCE_INVALID", f"{path} is not a valid enrichment batch: {exc}") from exc


def load_filing_results(path: Path) -> FilingResultStore:
    """Load the filing result store; a missing file is an empty store."""
    path = path.expanduser()
    if not path.exists():
        logger.info("Filing results %s not found; treating as empty.", path)
        return FilingResultStore()
    payload = _read_json(path, code="E_SOURCE_INVALID_JSON")
    try:
        return FilingResultStore.model_validate(payload)
    except ValidationError as exc:
        raise RecordStoreError("E_SOURCE_INVALID", f"{path} is not a valid filing result store: {exc}") from exc


def load_filing_matches(path: Path) -> FilingMatchStore:
    """Load filing entity matches; a missing file is an empty store."""
    path = path.expanduser()
    if not path.exists():
        logger.info("Filing matches %s not found; treating as empty.", path)
        return FilingMatchStore()
    payload = _read_json(path, code="E_SOURCE_INVALID_JSON")
    try:
        return FilingMatchStore.model_validate(payload)
    except ValidationError as exc:
        raise RecordStoreError("E_SOURCE_INVALID", f"{path} is not a valid filing match store: {exc}") from exc


def save_filing_results(store: FilingResultStore, path: Path) -> str:
    payload = store.model_dump(mode="json", exclude_unset=True)
    return _atomic_write_json(path, payload)


def _atomic_write_json(path: Path, payload: Any) -> str:
    serialized = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    temp_path.write_text(serialized, encoding="utf-8")
    temp_path.replace(path)
    digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    logger.info("Wrote %s sha256=%s", path, digest)
    return digest


def _read_json(path: Path, *, code: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RecordStoreError(code, f"{path} contains invalid JSON: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise RecordStoreError(code, f"{path} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise RecordStoreError("E_INPUT_UNREADABLE", f"{path} could not be read: {exc}") from exc
