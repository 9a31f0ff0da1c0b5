"""Loader/validator for coverage gap classification rules."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import yaml

from app.config import settings

logger = logging.getLogger("pipelines.gaps.rules")

DEFAULT_RULES_PATH = Path(__file__).resolve().parents[2] / "configs" / "gap_rules.v1.yaml"
QUERY_PLACEHOLDER = "{query}"
LOOKUP_SERVICE_COUNT = 2


class GapRulesError(RuntimeError):
    """Raised when gap rules cannot be loaded or validated."""

    def __init__(self, message: str, code: str = "RULES_LOAD_ERROR") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class LookupService:
    name: str
    url_template: str

    def url_for(self, company_name: str) -> str:
        # Same escaping as JavaScript's encodeURIComponent.
        return self.url_template.replace(QUERY_PLACEHOLDER, quote(company_name, safe="-_.!~*'()"))


@dataclass(frozen=True)
class GapRules:
    version: str
    home_jurisdiction: str
    domestic_aliases: frozenset[str]
    low_confidence_label: str
    lookup_services: tuple[LookupService, ...]
    ruleset_sha256: str

    def is_domestic(self, country: str | None) -> bool:
        """Absent country defaults to the home jurisdiction."""
        if not country or not country.strip():
            return True
        return country.strip().upper() in self.domestic_aliases


def resolve_rules_path(path: Path | None = None) -> Path:
    if path is not None:
        return path
    if settings.gap_rules_path:
        return Path(settings.gap_rules_path)
    return DEFAULT_RULES_PATH


def load_rules(path: Path | None = None) -> GapRules:
    target = resolve_rules_path(path).expanduser()
    if not target.exists():
        raise GapRulesError(f"Gap rules not found at {target}", code="RULES_LOAD_ERROR")
    try:
        parsed = yaml.safe_load(target.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise GapRulesError(f"Unable to parse YAML: {exc}", code="RULES_SCHEMA_INVALID") from exc
    if not isinstance(parsed, Mapping):
        raise GapRulesError("Gap rules must be a mapping.", code="RULES_SCHEMA_INVALID")

    version = str(parsed.get("version") or "").strip()
    if not version:
        raise GapRulesError("version is required.", code="RULES_SCHEMA_INVALID")

    home = str(parsed.get("home_jurisdiction") or "").strip().upper()
    if not home:
        raise GapRulesError("home_jurisdiction is required.", code="RULES_SCHEMA_INVALID")

    aliases = parsed.get("domestic_aliases") or []
    if not isinstance(aliases, Sequence) or isinstance(aliases, str):
        raise GapRulesError("domestic_aliases must be a list.", code="RULES_SCHEMA_INVALID")
    normalized_aliases = {str(alias).strip().upper() for alias in aliases if str(alias).strip()}
    normalized_aliases.add(home)

    low_label = str(parsed.get("low_confidence_label") or "low").strip().lower()

    services = parsed.get("lookup_services")
    if not isinstance(services, Sequence) or len(services) != LOOKUP_SERVICE_COUNT:
        raise GapRulesError(
            f"lookup_services must list exactly {LOOKUP_SERVICE_COUNT} services.",
            code="RULES_SCHEMA_INVALID",
        )
    normalized_services: list[LookupService] = []
    for entry in services:
        if not isinstance(entry, Mapping):
            raise GapRulesError("lookup_services entries must be mappings.", code="RULES_SCHEMA_INVALID")
        name = str(entry.get("name") or "").strip()
        template = str(entry.get("url_template") or "").strip()
        if not name or QUERY_PLACEHOLDER not in template:
            raise GapRulesError(
                f"lookup service {name or '?'} needs a name and a url_template containing {QUERY_PLACEHOLDER}.",
                code="RULES_SCHEMA_INVALID",
            )
        normalized_services.append(LookupService(name=name, url_template=template))

    canonical = json.dumps(parsed, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    ruleset_sha256 = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    logger.info("Loaded gap rules version=%s sha=%s", version, ruleset_sha256)

    return GapRules(
        version=version,
        home_jurisdiction=home,
        domestic_aliases=frozenset(normalized_aliases),
        low_confidence_label=low_label,
        lookup_services=tuple(normalized_services),
        ruleset_sha256=ruleset_sha256,
    )
