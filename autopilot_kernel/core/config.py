"""Runtime settings using pydantic-settings with the AUTOPILOT_ env prefix."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Process-level settings. Governance policy lives in ThresholdConfig, not here."""

    model_config = {"env_prefix": "AUTOPILOT_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    audit_db_path: str = ":memory:"
    threshold_config_path: Optional[str] = None  # JSON snapshot; defaults used when unset

    execution_delay_seconds: int = 300  # auto-approved items wait this long before dispatch
    heartbeat_interval_seconds: int = 60
