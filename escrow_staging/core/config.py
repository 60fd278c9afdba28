"""
Staging configuration.

Settings are loaded from a YAML file and may be overridden by environment
variables (optionally read from a ``.env`` file). Expected YAML format:

```yaml
tlds: [example, soy]
brda_tlds: [example]
generation_interval: P1D
brda_interval: P7D
transaction_cooldown: PT5M
lock_timeout: PT1H
cursor_epoch: 2024-01-01T00:00:00Z
num_shards: 100
artifact_root: /var/lib/escrow/staging
runner: spark
database:
  host: localhost
  port: 5432
  name: registry
  user: escrow
```
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationError
from .models import DepositMode

DEFAULT_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class DatabaseSettings(BaseModel):
    """PostgreSQL connection settings (defaults mirror the DB_* environment variables)."""

    host: str = "localhost"
    port: int = 5432
    name: str = "registry"
    user: str = "escrow"
    password: str | None = None
    min_size: int = 1
    max_size: int = 4

    def pool_kwargs(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.name,
            "user": self.user,
            "password": self.password,
            "min_size": self.min_size,
            "max_size": self.max_size,
        }


class StagingConfig(BaseModel):
    """
    Settings for one staging deployment.

    Attributes:
        tlds: TLDs with escrow enabled (FULL deposits)
        brda_tlds: TLDs that also get THIN deposits (None means all of ``tlds``)
        generation_interval: Spacing between FULL deposit watermarks
        brda_interval: Spacing between THIN deposit watermarks (defaults to
            ``generation_interval``)
        transaction_cooldown: Deposits are not started until the watermark is
            at least this old
        lock_timeout: Expiry of the per-deposit idempotency lock
        cursor_epoch: Position of a cursor that was never written
        num_shards: Number of resource index shards
        encryption_key: Fernet key protecting staged artifacts
        artifact_root: Directory staged artifacts are written under
        runner: Job substrate, "spark" or "local"
        max_workers: Worker threads for the local runner
        max_task_attempts: Attempts per task before the job fails
    """

    tlds: list[str] = Field(default_factory=list)
    brda_tlds: list[str] | None = None
    generation_interval: timedelta = timedelta(days=1)
    brda_interval: timedelta | None = None
    transaction_cooldown: timedelta = timedelta(minutes=5)
    lock_timeout: timedelta = timedelta(hours=1)
    cursor_epoch: datetime = DEFAULT_EPOCH
    num_shards: int = Field(100, ge=1)
    encryption_key: str | None = None
    artifact_root: str = "staging"
    runner: Literal["spark", "local"] = "spark"
    max_workers: int = Field(4, ge=1)
    max_task_attempts: int = Field(3, ge=1)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    @field_validator("generation_interval", "transaction_cooldown", "lock_timeout")
    @classmethod
    def check_positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("durations must be positive")
        return v

    @field_validator("cursor_epoch")
    @classmethod
    def check_epoch(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def check_brda_tlds(self) -> "StagingConfig":
        unknown = set(self.brda_tlds or []) - set(self.tlds)
        if unknown:
            raise ValueError(f"brda_tlds not in tlds: {sorted(unknown)}")
        return self

    def thin_tlds(self) -> list[str]:
        return list(self.tlds if self.brda_tlds is None else self.brda_tlds)

    def interval_for(self, mode: DepositMode) -> timedelta:
        """Return the generation interval of a deposit mode."""
        if mode == DepositMode.THIN and self.brda_interval is not None:
            return self.brda_interval
        return self.generation_interval


# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_NAME": ("database", "name"),
    "DB_USER": ("database", "user"),
    "DB_PASSWORD": ("database", "password"),
    "ESCROW_ENCRYPTION_KEY": (None, "encryption_key"),
    "ESCROW_ARTIFACT_ROOT": (None, "artifact_root"),
    "ESCROW_RUNNER": (None, "runner"),
}


def load_config(config_path: str | Path | None = None, env_file: str | Path | None = None) -> StagingConfig:
    """
    Load staging configuration from YAML and environment.

    Args:
        config_path: Path to the YAML file (optional; env-only config is allowed)
        env_file: Optional ``.env`` file loaded before reading overrides

    Returns:
        Validated StagingConfig

    Raises:
        ConfigurationError: If the file is missing or the settings are invalid
    """
    if env_file is not None:
        load_dotenv(env_file, override=True)

    raw: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Staging configuration file not found: {config_path}")
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError("Staging configuration must be a mapping")

    for env_var, (section, field) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is None:
            continue
        if section:
            raw.setdefault(section, {})[field] = value
        else:
            raw[field] = value

    try:
        return StagingConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid staging configuration: {e}") from e
