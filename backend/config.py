from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _load_version() -> str:
    version_path = Path(__file__).resolve().parent / "VERSION"
    try:
        return version_path.read_text().strip()
    except FileNotFoundError:
        return "0.1.0"


class Settings(BaseSettings):
    """Application configuration using Pydantic settings."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/speedchecker.db"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Application
    APP_NAME: str = "Speed Checker"
    APP_VERSION: str = _load_version()
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API server
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8080

    # ── Measurement tools ──────────────────────────────────────────────
    SPEEDTEST_COMMAND: str = "speedtest"
    IPERF_COMMAND: str = "iperf3"

    # Schedules (seconds)
    SPEEDTEST_INTERVAL_SECONDS: int = 15 * 60
    IPERF_INTERVAL_SECONDS: int = 10 * 60

    # iperf3 runs for IPERF_DURATION_SECONDS and is killed after
    # IPERF_DURATION_SECONDS + IPERF_TIMEOUT_GRACE_SECONDS
    IPERF_DURATION_SECONDS: int = 10
    IPERF_TIMEOUT_GRACE_SECONDS: int = 30
    SPEEDTEST_TIMEOUT_SECONDS: int = 120

    # "bits" or "bytes"; unset means the per-mode default (see bandwidth_unit())
    SPEEDTEST_BANDWIDTH_UNIT: Optional[str] = None

    # ── Daemon ─────────────────────────────────────────────────────────
    DAEMON_MODE: str = "api"  # "api" = remote submission, "direct" = database
    API_ENDPOINT: str = "http://localhost:8080"
    API_TIMEOUT_SECONDS: float = 30.0
    MAX_CONCURRENT_RUNS: int = 4

    class Config:
        env_file = ".env"
        case_sensitive = True

    def bandwidth_unit(self, mode: Optional[str] = None) -> str:
        """Resolve the speedtest bandwidth unit for a daemon mode.

        Direct-storage mode reads the bandwidth field as bytes/sec, API mode
        as bits/sec, unless SPEEDTEST_BANDWIDTH_UNIT pins one convention.
        """
        if self.SPEEDTEST_BANDWIDTH_UNIT:
            return self.SPEEDTEST_BANDWIDTH_UNIT.lower()
        mode = (mode or self.DAEMON_MODE).lower()
        return "bytes" if mode == "direct" else "bits"


settings = Settings()
