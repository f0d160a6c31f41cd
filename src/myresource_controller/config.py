"""
Controller configuration.

Loaded from ``<home>/config.yaml`` when present; every field has a
default so an empty home directory is a valid setup. Command-line
options override what the file says.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from . import CONTROLLER_HOME
from .models import ProviderKind

logger = logging.getLogger("myresource.config")

CONFIG_FILE = "config.yaml"
LOG_DIR = "logs"

STORE_KINDS = ("kubernetes", "file", "memory")


class ControllerConfig(BaseModel):
    """Runtime settings for the controller service."""

    home: Path = Field(default_factory=lambda: Path(CONTROLLER_HOME).expanduser())
    store: str = Field(default="kubernetes", description="kubernetes, file or memory")
    namespace: Optional[str] = Field(
        default=None, description="Only watch this namespace (default: all)",
    )
    workers: int = Field(default=2, ge=1, le=32)
    resync_interval: float = Field(default=300.0, gt=0, description="Seconds between full resyncs")
    base_backoff: float = Field(default=5.0, gt=0)
    max_backoff: float = Field(default=300.0, gt=0)
    gcp_poll_interval: float = Field(default=2.0, gt=0)
    azure_poll_interval: float = Field(default=5.0, gt=0)
    operation_timeout: float = Field(
        default=600.0, ge=0, description="Per cloud operation; 0 waits forever",
    )
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator("store")
    @classmethod
    def store_must_be_known(cls, v: str) -> str:
        if v not in STORE_KINDS:
            raise ValueError(f"store must be one of {STORE_KINDS}: got '{v}'")
        return v

    @field_validator("log_level")
    @classmethod
    def level_must_be_known(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: '{v}'")
        return level

    @property
    def effective_log_file(self) -> Path:
        return self.log_file or (self.home / LOG_DIR / "controller.log")

    @property
    def operation_deadline(self) -> Optional[float]:
        return self.operation_timeout or None

    def backend_options(self) -> Dict[ProviderKind, Dict[str, Any]]:
        """Constructor arguments for the registry-built backends."""
        return {
            ProviderKind.GCP: {
                "poll_interval": self.gcp_poll_interval,
                "operation_timeout": self.operation_deadline,
            },
            ProviderKind.AZURE: {
                "poll_interval": self.azure_poll_interval,
                "operation_timeout": self.operation_deadline,
            },
        }


def load_config(home: Optional[Path] = None, **overrides: Any) -> ControllerConfig:
    """Load the controller configuration from disk.

    Args:
        home: Controller home directory. Defaults to $MYRESOURCE_HOME or
            ~/.myresource.
        **overrides: Field values that win over the file (None is ignored).

    Returns:
        ControllerConfig from config.yaml, or defaults.
    """
    home_path = (home or Path(CONTROLLER_HOME)).expanduser()
    data: Dict[str, Any] = {}

    config_file = home_path / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            logger.warning("Failed to parse %s: %s; using defaults", config_file, exc)
            data = {}
        if not isinstance(data, dict):
            logger.warning("Ignoring %s: expected a mapping", config_file)
            data = {}

    explicit = {k: v for k, v in overrides.items() if v is not None}
    explicit["home"] = home_path
    try:
        return ControllerConfig(**{**data, **explicit})
    except ValueError as exc:
        if not data:
            raise
        logger.warning("Invalid settings in %s: %s; using defaults", config_file, exc)
        return ControllerConfig(**explicit)
