from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Maintenance tool settings loaded from environment variables."""

    # Application
    app_name: str = "Funding Reconciliation"
    app_version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"

    # Record store + observation sources
    records_path: str = "src/data/projects.json"
    enrichment_path: str = "scripts/funding-scraper/web-enrichment.json"
    filing_results_path: str = "scripts/funding-scraper/results.json"
    filing_matches_path: str = "scripts/funding-scraper/edgar-matches.json"

    # Reconciliation
    filing_update_threshold: float = 0.05
    filing_source_label: str = "sec-edgar-form-d"

    # Gap analysis
    gap_rules_path: str | None = None
    gap_report_path: str = "scripts/funding-scraper/funding-gaps.md"
    gap_export_path: str = "scripts/funding-scraper/funding-gaps.csv"
    gap_priority_limit: int = 30
    remaining_search_limit: int = 30

    # Telemetry
    telemetry_format: str = "text"
    telemetry_path: str | None = None

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


settings = Settings()
