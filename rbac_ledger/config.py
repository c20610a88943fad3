"""RBAC Ledger — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from rbac_ledger.catalog.schema import AssignmentPolicy


class RbacSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── Storage ────────────────────────────────────────────────
    database_url: str = "sqlite:///rbac_ledger.db"
    database_echo: bool = False
    # Seconds a SQLite connection waits on another writer's lock
    database_busy_timeout: float = 30.0

    # ── Authorization policy ───────────────────────────────────
    assignment_policy: AssignmentPolicy = AssignmentPolicy.ADMIN_ONLY
    # Start role_count at 1 on initialize (legacy counter seed)
    seed_role_count: bool = False

    # ── Dashboard ──────────────────────────────────────────────
    dashboard_host: str = "0.0.0.0"
    dashboard_port: int = 8000

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = RbacSettings()
