"""Run-summary telemetry for reconciliation and gap-analysis tools."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from app.config import settings

logger = logging.getLogger("telemetry")


@dataclass(frozen=True)
class TelemetryConfig:
    format: str = "text"
    path: Path | None = None


class Telemetry:
    """Emit one structured event per tool run to the log and an optional JSONL file."""

    def __init__(self, config: TelemetryConfig) -> None:
        self._config = config
        if self._config.path:
            self._config.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, module: str, event: str, **fields: Any) -> dict[str, Any]:
        payload = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "module": module,
            "event": event,
            **fields,
        }
        serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        if self._config.format == "json":
            logger.info(serialized)
        else:
            logger.info("%s event=%s %s", module, event, _format_fields(fields))
        self._write_to_file(serialized)
        return payload

    def emit_counters(self, module: str, counters: Mapping[str, int], **fields: Any) -> dict[str, Any]:
        """Emit a ``summary`` event carrying a run's counters."""
        return self.emit(module, "summary", counters=dict(sorted(counters.items())), **fields)

    def _write_to_file(self, line: str) -> None:
        if not self._config.path:
            return
        try:
            with self._config.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:  # pragma: no cover
            logger.warning("TELEMETRY_WRITE_ERROR path=%s error=%s", self._config.path, exc)


def _format_fields(fields: Mapping[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(fields.items()))


_TELEMETRY: Telemetry | None = None


def _load_config() -> TelemetryConfig:
    fmt = (settings.telemetry_format or "text").strip().lower()
    path = Path(settings.telemetry_path).expanduser() if settings.telemetry_path else None
    return TelemetryConfig(format=fmt if fmt in {"json", "text"} else "text", path=path)


def get_telemetry() -> Telemetry:
    global _TELEMETRY  # noqa: PLW0603
    if _TELEMETRY is None:
        _TELEMETRY = Telemetry(_load_config())
    return _TELEMETRY


def reset_telemetry_for_testing() -> None:
    global _TELEMETRY  # noqa: PLW0603
    _TELEMETRY = None
