"""Monitoring scheduler configuration with sensible defaults."""

import os
from dataclasses import dataclass


@dataclass
class MonitoringConfig:
    max_concurrent_merchants: int = 4
    max_concurrent_orders: int = 16
    dispute_timeout_seconds: float = 5.0
    page_size: int = 500

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Load config with env var overrides. Env vars use MONITORING_ prefix."""
        config = cls()

        if v := os.getenv("MONITORING_MAX_CONCURRENT_MERCHANTS"):
            config.max_concurrent_merchants = int(v)
        if v := os.getenv("MONITORING_MAX_CONCURRENT_ORDERS"):
            config.max_concurrent_orders = int(v)
        if v := os.getenv("MONITORING_DISPUTE_TIMEOUT_SECONDS"):
            config.dispute_timeout_seconds = float(v)

        return config


default_config = MonitoringConfig()
