"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Environment variables override it
using ``__`` as the nested delimiter (e.g. ``PAIRING__PHONE_HINT``).

Priority (highest wins): init args > env vars > .env > config.toml

Usage::

    from mentionbot.config import get_settings

    s = get_settings()
    print(s.bot.prefix)
    print(s.dispatch.batch_size)
"""

from __future__ import annotations

import os
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from mentionbot.identity import normalize

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Unknown keys are rejected."""

    model_config = {"extra": "forbid"}


class BotConfig(_StrictModel):
    prefix: str = "!"
    # Numbers allowed to issue commands from direct chats, stored as digits
    owners: list[str] = []
    tagall_command: str = "tagall"
    subgroup_prefix: str = "tag"

    @field_validator("prefix")
    @classmethod
    def single_char_prefix(cls, v: str) -> str:
        if len(v) != 1 or v.isspace():
            raise ValueError("prefix must be a single non-space character")
        return v

    @field_validator("owners")
    @classmethod
    def normalize_owners(cls, v: list[str]) -> list[str]:
        digits = [normalize(o) for o in v]
        bad = [o for o, d in zip(v, digits, strict=True) if not d]
        if bad:
            raise ValueError(f"Owner entries without a phone number: {bad}")
        return list(dict.fromkeys(digits))

    @field_validator("tagall_command", "subgroup_prefix")
    @classmethod
    def lowercase_words(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def _require_subgroup_prefix(self) -> BotConfig:
        if not self.subgroup_prefix:
            raise ValueError("subgroup_prefix cannot be empty")
        return self


class PairingConfig(_StrictModel):
    phone_hint: str | None = None  # number that receives the pairing code
    settle_delay: float = 3.0  # seconds before requesting a code
    retry_delay: float = 10.0  # seconds after a rate-limit/conflict failure

    @field_validator("phone_hint")
    @classmethod
    def digits_only(cls, v: str | None) -> str | None:
        if v is None:
            return None
        digits = "".join(ch for ch in v if ch.isdigit())
        return digits or None


class DispatchConfig(_StrictModel):
    batch_size: int = 20
    delay_ms: int = 400

    @field_validator("batch_size")
    @classmethod
    def clamp_batch_size(cls, v: int) -> int:
        return max(1, v)

    @field_validator("delay_ms")
    @classmethod
    def non_negative_delay(cls, v: int) -> int:
        return max(0, v)


class ReconnectConfig(_StrictModel):
    floor: float = 1.0  # seconds
    growth: float = 1.5
    ceiling: float = 15.0  # seconds
    invalid_session_delay: float = 2.0  # seconds

    @model_validator(mode="after")
    def _check_bounds(self) -> ReconnectConfig:
        if self.floor <= 0:
            raise ValueError("reconnect.floor must be positive")
        if self.growth < 1:
            raise ValueError("reconnect.growth must be at least 1")
        if self.ceiling < self.floor:
            raise ValueError("reconnect.ceiling must be >= reconnect.floor")
        return self


class StorageConfig(_StrictModel):
    auth_dir: str = "auth_info"
    data_dir: str = "data"


class ServerConfig(_StrictModel):
    enabled: bool = True
    port: int = 3000


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    bot: BotConfig = BotConfig()
    pairing: PairingConfig = PairingConfig()
    dispatch: DispatchConfig = DispatchConfig()
    reconnect: ReconnectConfig = ReconnectConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def project_root(self) -> Path:
        return Path.cwd()

    @cached_property
    def auth_dir(self) -> Path:
        return (self.project_root / self.storage.auth_dir).resolve()

    @cached_property
    def data_dir(self) -> Path:
        return (self.project_root / self.storage.data_dir).resolve()

    @cached_property
    def registry_path(self) -> Path:
        return self.data_dir / "subgroups.json"

    @cached_property
    def http_port(self) -> int:
        # Hosting platforms hand the port in via $PORT
        if port := os.environ.get("PORT"):
            return int(port)
        return self.server.port


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
