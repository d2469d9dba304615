"""Configuration for the feed recovery client."""

import os
from dataclasses import dataclass
from typing import Optional

from errors import ConfigurationError
from normalize import MAX_ENCODABLE_SEQUENCE


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    return int(raw) if raw else None


@dataclass
class RecoveryConfig:
    """
    Configuration container for a recovery run.

    Loaded from environment variables with sensible defaults; main.py lets
    command-line flags override any of them.
    """
    # Feed server
    host: str = "localhost"
    port: int = 3000

    # Protocol
    known_total: int = 14
    request_timeout_ms: int = 2000
    max_attempts: int = 5
    gap_concurrency: int = 1
    connect_timeout_ms: Optional[int] = None

    # Output
    output_path: str = "output.json"
    database_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RecoveryConfig":
        """Load configuration from environment variables."""
        try:
            return cls(
                host=os.getenv("FEED_HOST", "localhost"),
                port=int(os.getenv("FEED_PORT", "3000")),
                known_total=int(os.getenv("FEED_KNOWN_TOTAL", "14")),
                request_timeout_ms=int(os.getenv("FEED_REQUEST_TIMEOUT_MS", "2000")),
                max_attempts=int(os.getenv("FEED_MAX_ATTEMPTS", "5")),
                gap_concurrency=int(os.getenv("FEED_GAP_CONCURRENCY", "1")),
                connect_timeout_ms=_optional_int("FEED_CONNECT_TIMEOUT_MS"),
                output_path=os.getenv("FEED_OUTPUT_PATH", "output.json"),
                database_url=os.getenv("DATABASE_URL") or None,
                log_level=os.getenv("LOG_LEVEL", "INFO"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting in environment: {e}") from e

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.host:
            raise ConfigurationError("host is required")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"port out of range: {self.port}")
        if self.known_total < 1:
            raise ConfigurationError("known_total must be at least 1")
        if self.known_total > MAX_ENCODABLE_SEQUENCE:
            raise ConfigurationError(
                f"known_total {self.known_total} exceeds {MAX_ENCODABLE_SEQUENCE}, "
                "the largest sequence a single-packet request can address"
            )
        if self.request_timeout_ms <= 0:
            raise ConfigurationError("request_timeout_ms must be positive")
        if self.max_attempts < 0:
            raise ConfigurationError("max_attempts cannot be negative")
        if self.gap_concurrency < 1:
            raise ConfigurationError("gap_concurrency must be at least 1")
        if self.connect_timeout_ms is not None and self.connect_timeout_ms <= 0:
            raise ConfigurationError("connect_timeout_ms must be positive when set")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
