# config.py
import os
from dataclasses import dataclass

@dataclass
class _Settings:
    CORS_ALLOW_ORIGINS: list = None
    API_KEY: str = ""
    # Root folder holding machines.json, operators.json, ... and machine_<id>/ dirs
    DATA_PATH: str = ""
    TIMEZONE: str = "UTC"

    DEFAULT_LOOKBACK_DAYS: int = 7
    METADATA_TTL_SEC: int = 3600
    SCAN_MAX_WORKERS: int = 8

    # --- capacity used by the utilization KPI ---
    MACHINE_COUNT: int = 8
    SHIFT_HOURS: float = 8.0

    def __post_init__(self):
        if self.CORS_ALLOW_ORIGINS is None:
            allow_all = os.getenv("CORS_ALLOW_ALL", "1") == "1"
            if allow_all:
                self.CORS_ALLOW_ORIGINS = ["*"]
            else:
                origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
                self.CORS_ALLOW_ORIGINS = [o.strip() for o in origins.split(",") if o.strip()]

        self.API_KEY = os.getenv("API_KEY", "")

        self.DATA_PATH = os.getenv("DATA_PATH", os.path.abspath("data"))
        self.TIMEZONE = os.getenv("TIMEZONE", self.TIMEZONE)

        self.DEFAULT_LOOKBACK_DAYS = int(os.getenv("DEFAULT_LOOKBACK_DAYS", self.DEFAULT_LOOKBACK_DAYS))
        self.METADATA_TTL_SEC = int(os.getenv("METADATA_TTL_SEC", self.METADATA_TTL_SEC))
        self.SCAN_MAX_WORKERS = max(1, int(os.getenv("SCAN_MAX_WORKERS", self.SCAN_MAX_WORKERS)))

        self.MACHINE_COUNT = int(os.getenv("MACHINE_COUNT", self.MACHINE_COUNT))
        self.SHIFT_HOURS = float(os.getenv("SHIFT_HOURS", self.SHIFT_HOURS))

SETTINGS = _Settings()
