"""Hub configuration — env-driven, passed explicitly.

Centralized settings using pydantic-settings.  Reads from a .env file and
JOBHUB_* environment variables.  There is no module-level instance: the
CLI builds one ``HubConfig`` and hands it to ``JobHub``, which threads it
into every component that needs it.
"""

from __future__ import annotations

import hmac
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

AdmissionPolicy = Literal["reject", "queue"]
LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


def parse_socket_address(value: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    IPv6 hosts may be bracketed (``[::1]:3000``).

    Raises
    ------
    ValueError
        If the port is missing or not an integer in 1..65535.
    """
    host, sep, port_str = value.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Expected host:port, got {value!r}")
    host = host.strip("[]")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"Invalid port in {value!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in {value!r}")
    return host, port


class HubConfig(BaseSettings):
    """Job hub configuration with environment variable overrides.

    All settings can be overridden via JOBHUB_* environment variables
    or a .env file in the working directory.

    Examples
    --------
    Override via environment::

        export JOBHUB_API_TOKEN=secret
        export JOBHUB_PROJECTS_DIR=/home/app/projects
        export JOBHUB_ADMISSION_POLICY=queue
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="JOBHUB_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: LogLevel = "INFO"
    debug: bool = False

    # Listener and auth
    api_token: SecretStr = SecretStr("")
    host: str = "127.0.0.1"
    port: int = 3000
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Projects
    projects_dir: Path = Path("projects")
    auto_discover: bool = True
    default_entrypoint: list[str] = Field(
        default_factory=lambda: ["python3", "main.py"]
    )
    pipeline_env: dict[str, str] = Field(default_factory=dict)

    # Admission
    max_concurrent_runs_per_project: int = Field(default=1, ge=1)
    admission_policy: AdmissionPolicy = "reject"
    max_queue_depth: int = Field(default=16, ge=0)

    # Supervision
    run_timeout_seconds: float | None = 600.0
    termination_grace_seconds: float = Field(default=5.0, ge=0)
    kill_wait_seconds: float = Field(default=2.0, gt=0)
    read_chunk_size: int = Field(default=256, ge=1)
    max_output_bytes: int = Field(default=4 * 1024 * 1024, ge=0)

    # Retention
    retention_seconds: float = Field(default=900.0, ge=0)
    reaper_interval_seconds: float = Field(default=30.0, gt=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @field_validator("run_timeout_seconds")
    @classmethod
    def _zero_timeout_disables(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    @property
    def socket_address(self) -> str:
        """The listener address as ``host:port``."""
        return f"{self.host}:{self.port}"

    def api_token_valid(self, token: str) -> bool:
        """Return whether *token* matches the configured bearer token."""
        expected = self.api_token.get_secret_value()
        return bool(expected) and hmac.compare_digest(token.encode(), expected.encode())
