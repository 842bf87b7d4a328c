"""
compliance-audit-router: Configuration
Bridges monitoring alerts to directory identities and tracking tickets.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────────────────────────
    app_name: str = "compliance-audit-router"
    app_version: str = "0.1.0"
    app_env: str = "development"
    log_level: str = "INFO"
    verbose: bool = False               # log route registration and stage transitions

    # ── Server ───────────────────────────────────────────────────────────────
    listen_host: str = "0.0.0.0"
    listen_port: int = 8080

    # ── Alert decoding ───────────────────────────────────────────────────────
    max_body_bytes: int = 1048576       # 1 MiB
    strict_decoding: bool = False       # reject unknown top-level fields
    body_read_timeout_s: float = 10.0

    # ── Directory (identity lookup) ──────────────────────────────────────────
    directory_base_url: str = ""
    directory_token: str = ""
    directory_timeout_s: float = 5.0
    directory_cache_ttl_s: float = 0    # 0 = no caching
    require_manager: bool = False       # abort when the user has no resolvable manager

    # ── Jira (ticket dispatch) ───────────────────────────────────────────────
    jira_base_url: str = ""
    jira_token: str = ""
    jira_project_key: str = "OHSS"
    jira_issue_type: str = "Task"
    jira_labels: List[str] = ["compliance-audit"]
    ticket_timeout_s: float = 10.0

    # ── Errors / telemetry ───────────────────────────────────────────────────
    expose_internal_error_details: bool = False
    enable_metrics: bool = True

    class Config:
        env_file = ".env"
        extra = "ignore"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable view of the settings the alert pipeline needs."""

    max_body_bytes: int = 1048576
    strict_decoding: bool = False
    body_read_timeout_s: float = 10.0
    directory_timeout_s: float = 5.0
    ticket_timeout_s: float = 10.0
    verbose: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "PipelineConfig":
        return cls(
            max_body_bytes=s.max_body_bytes,
            strict_decoding=s.strict_decoding,
            body_read_timeout_s=s.body_read_timeout_s,
            directory_timeout_s=s.directory_timeout_s,
            ticket_timeout_s=s.ticket_timeout_s,
            verbose=s.verbose,
        )


settings = Settings()
