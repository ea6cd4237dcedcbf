"""
Dispatch configuration (args/push_dispatch.yaml)

Secrets come from the environment first, then the YAML file:
    VAPID_PRIVATE_KEY, VAPID_PUBLIC_KEY, VAPID_SUBJECT

Usage:
    from pushdispatch.config import load_config, build_keypair

    config = load_config()
    keypair = build_keypair(config)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from pushdispatch import CONFIG_PATH, DATA_DIR
from pushdispatch.logging_config import get_logger
from pushdispatch.models import Urgency

logger = get_logger(__name__)


class VapidConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    private_key: str = Field(default="")
    public_key: str = Field(default="")
    subject: str = Field(default="mailto:notifications@example.com")
    expiry_seconds: int = Field(default=600, ge=1, le=86400)


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    max_attempts: int = Field(default=5, ge=1)
    base_delay_seconds: float = Field(default=1.0, gt=0)
    max_delay_seconds: float = Field(default=60.0, gt=0)
    jitter: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "RetryConfig":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self


class TransportConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    pool_size: int = Field(default=10, ge=1)
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_payload_bytes: int = Field(default=4096, ge=1)


class DefaultsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    ttl_seconds: int = Field(default=86400, ge=0)
    urgency: Urgency = Field(default=Urgency.NORMAL)


class StoreConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    backend: Literal["memory", "sqlite"] = Field(default="sqlite")
    sqlite_path: str = Field(default=str(DATA_DIR / "push_dispatch.db"))


class DispatchConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    vapid: VapidConfig = Field(default_factory=VapidConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)


def _apply_env_overrides(config: DispatchConfig) -> DispatchConfig:
    env_map = {
        "VAPID_PRIVATE_KEY": "private_key",
        "VAPID_PUBLIC_KEY": "public_key",
        "VAPID_SUBJECT": "subject",
    }
    for env_name, attr in env_map.items():
        value = os.environ.get(env_name)
        if value:
            setattr(config.vapid, attr, value)
    return config


def load_config(path: Path | str | None = None) -> DispatchConfig:
    """
    Load dispatch configuration.

    A missing file yields defaults; an invalid file logs a warning and
    falls back to defaults. Environment VAPID settings always win.
    """
    yaml_path = Path(path) if path is not None else CONFIG_PATH

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        config = DispatchConfig.model_validate(raw)
    except Exception as e:
        logger.warning("config_invalid_using_defaults", path=str(yaml_path), error=str(e))
        config = DispatchConfig()

    return _apply_env_overrides(config)


def build_keypair(config: DispatchConfig):
    """
    Build the application keypair from config.

    Raises:
        VapidKeyError: If no private key is configured or it cannot be loaded
    """
    from pushdispatch.push.signer import ApplicationKeypair

    return ApplicationKeypair.load(
        private_key=config.vapid.private_key,
        subject=config.vapid.subject,
        expiry_seconds=config.vapid.expiry_seconds,
    )


__all__ = [
    "DefaultsConfig",
    "DispatchConfig",
    "RetryConfig",
    "StoreConfig",
    "TransportConfig",
    "VapidConfig",
    "build_keypair",
    "load_config",
]
