############################################################
#
# temper - GPU Thermal and Power Control Daemon
#
# settings.py: Daemon configuration and environment settings
#
############################################################

"""Daemon settings using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_version() -> str:
    """Read version from installed package metadata or pyproject.toml."""
    try:
        from importlib.metadata import version
        return version("temper")
    except Exception:
        pass
    # Fallback: read pyproject.toml directly (works in dev without pip install)
    try:
        import tomllib
        toml_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except Exception:
        return "0.0.0"


class Settings(BaseSettings):
    """Daemon configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "temper"
    app_version: str = Field(default_factory=_get_version)

    # Chassis BMC (empty host disables chassis telemetry and control)
    ipmi_host: str = ""
    ipmi_user: str = ""
    ipmi_pass: str = ""
    ipmi_backend: str = "auto"  # auto, freeipmi, ipmitool, ssh
    ipmi_ssh_target: Optional[str] = None  # user@host running in-band ipmitool

    # Response curves, whitespace separated "temp:value" tokens
    fan_setpoints: str = ""
    power_setpoints: str = ""
    chassis_fan_setpoints: str = ""

    # Local inference service (llama.cpp server)
    llama_host: str = "localhost"
    llama_port: int = 8081
    llama_api_prefix: str = ""
    llama_api_key: Optional[str] = None
    llama_poll_interval: float = 0.1  # seconds

    # Metrics snapshot server
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 3001
    metrics_secret: Optional[str] = None

    # Control loop
    loop_interval: float = 0.1  # seconds
    chassis_poll_interval: float = 30.0  # seconds
    chassis_fan_every_n_ticks: int = 10
    safety_power_watts: int = 100

    # Logging
    verbose: bool = False
    log_level: str = "INFO"
    log_format: str = "console"
    log_file: Optional[str] = None

    @field_validator("ipmi_backend")
    @classmethod
    def normalize_backend(cls, v: str) -> str:
        """Accept backend names case-insensitively."""
        v = (v or "auto").strip().lower()
        if v not in ("auto", "freeipmi", "ipmitool", "ssh"):
            raise ValueError(f"unknown ipmi_backend: {v}")
        return v

    @field_validator("llama_api_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        """Strip trailing slash from the API prefix."""
        return (v or "").rstrip("/")

    @property
    def effective_log_level(self) -> str:
        """DEBUG when verbose logging is requested, else the configured level."""
        return "DEBUG" if self.verbose else self.log_level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
