"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from webhook_bridge.core.types import DmPolicy

WILDCARD = "*"


class _ChannelModel(BaseModel):
    """Channel settings accept both camelCase and snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )


class InboundConfig(_ChannelModel):
    host: str = "0.0.0.0"
    port: int = Field(default=5000, ge=1, le=65535)
    path: str = "/"
    token: Optional[str] = None


class OutboundConfig(_ChannelModel):
    url: Optional[str] = None
    token: Optional[str] = None
    timeout_seconds: int = Field(default=30, gt=0)


class DmConfig(_ChannelModel):
    enabled: Optional[bool] = None
    policy: DmPolicy = DmPolicy.PAIRING
    allow_from: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _open_requires_wildcard(self) -> DmConfig:
        if self.policy == DmPolicy.OPEN and WILDCARD not in self.allow_from:
            raise ValueError(
                'dm.policy="open" requires dm.allowFrom to include "*"'
            )
        return self


class AccountConfig(_ChannelModel):
    name: Optional[str] = None
    enabled: bool = True
    inbound: InboundConfig = Field(default_factory=InboundConfig)
    outbound: OutboundConfig = Field(default_factory=OutboundConfig)
    dm: DmConfig = Field(default_factory=DmConfig)
    media_max_mb: float = Field(default=20, gt=0)
    text_chunk_limit: int = Field(default=4000, gt=0)

    @property
    def media_max_bytes(self) -> int:
        return int(self.media_max_mb * 1024 * 1024)


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class BackendConfig(BaseModel):
    kind: Literal["echo", "anthropic"] = "echo"
    agent_id: str = "main"
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    system_prompt: str = ""
    temperature: float = 0.7
    history_turns: int = 20


class StorageConfig(BaseModel):
    db_path: str = "./data/webhook_bridge.db"
    media_dir: str = "./data/media"
    token_usage_path: str = "./data/http-webhook-tokens.json"
    autosave_interval_seconds: int = Field(default=30, ge=0)


class PairingConfig(BaseModel):
    ttl_minutes: int = Field(default=60, gt=0)


class CommandsConfig(BaseModel):
    use_access_groups: bool = True


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    webhook: AccountConfig = Field(default_factory=AccountConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    anthropic: Optional[AnthropicConfig] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)

    @model_validator(mode="after")
    def _anthropic_backend_needs_credentials(self) -> AppConfig:
        if self.backend.kind == "anthropic" and self.anthropic is None:
            raise ValueError(
                "backend.kind 'anthropic' requires an 'anthropic' section in config"
            )
        return self


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced as ${data_dir} by the storage paths
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
