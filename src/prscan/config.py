"""Scan settings with environment overrides."""

import os

from pydantic import BaseModel, Field

ENV_PREFIX = "PRSCAN_"


class ScanSettings(BaseModel):
    """Tunable limits and thresholds for a scan run."""

    # Archive extraction bounds
    max_file_size: int = 50 * 1024 * 1024
    max_total_size: int = 500 * 1024 * 1024
    include_extensions: list[str] = Field(default_factory=lambda: [".js"])

    # Registry access
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0)
    download_period: str = "last-week"

    # Risk thresholds
    freshness_days: int = 30
    popularity_threshold: int = 10_000
    keywords: list[str] = Field(default_factory=lambda: ["ethereum"])

    # Abort the batch on the first failing dependency
    fail_fast: bool = True

    @classmethod
    def from_env(cls, **overrides) -> "ScanSettings":
        """Build settings from ``PRSCAN_*`` environment variables.

        List values are comma separated, e.g.
        ``PRSCAN_KEYWORDS=ethereum,wallet``. Explicit keyword arguments
        take precedence over the environment.
        """
        values: dict = {}
        for field_name, field in cls.model_fields.items():
            raw = os.environ.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is None:
                continue
            if field.annotation == list[str]:
                values[field_name] = [item.strip() for item in raw.split(",") if item.strip()]
            elif field.annotation is bool:
                values[field_name] = raw.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[field_name] = raw
        values.update(overrides)
        return cls.model_validate(values)
