from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cadence.domain import constants as C


def config_files() -> list[Path]:
    return [
        Path.home() / ".config/cadence/config.toml",
        Path.home() / ".cadence.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for cadence.
    Supports loading from:
    1. Environment variables (CADENCE_*)
    2. Config file (~/.config/cadence/config.toml)
    3. Manual overrides (CLI / HTTP)
    """

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        extra="ignore",
    )

    # Storage
    backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".local/share/cadence" / C.DEFAULT_DATABASE_NAME
    )
    busy_timeout_ms: int = C.BUSY_TIMEOUT_MS

    # Scheduling
    learning_steps_minutes: list[int] = Field(
        default_factory=lambda: list(C.LEARNING_STEPS_MINUTES)
    )
    relearning_steps_minutes: list[int] = Field(
        default_factory=lambda: list(C.RELEARNING_STEPS_MINUTES)
    )
    graduate_interval_days: int = C.GRADUATE_INTERVAL_DAYS
    default_ease_factor: float = C.DEFAULT_EASE_FACTOR
    min_ease_factor: float = C.MIN_EASE_FACTOR
    max_ease_factor: float = C.MAX_EASE_FACTOR
    ease_factor_up: float = C.EASE_FACTOR_UP
    ease_factor_down: float = C.EASE_FACTOR_DOWN

    # Session queue
    min_session_size: int = C.MIN_SESSION_SIZE

    # Server
    host: str = "127.0.0.1"
    port: int = 8787

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing config file wins
        toml_file = next((f for f in config_files() if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("database_path", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("learning_steps_minutes", "relearning_steps_minutes")
    @classmethod
    def check_steps(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("step list must not be empty")
        if any(minutes <= 0 for minutes in v):
            raise ValueError("step delays must be positive minutes")
        return v

    @field_validator("graduate_interval_days")
    @classmethod
    def check_graduate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("graduate_interval_days must be at least 1")
        return v

    @model_validator(mode="after")
    def check_ease_bounds(self) -> "AppConfig":
        if not 0 < self.min_ease_factor <= self.max_ease_factor:
            raise ValueError("ease factor bounds must satisfy 0 < min <= max")
        if not self.min_ease_factor <= self.default_ease_factor <= self.max_ease_factor:
            raise ValueError("default_ease_factor must lie within the ease bounds")
        if self.ease_factor_up < 0 or self.ease_factor_down < 0:
            raise ValueError("ease factor deltas must be non-negative")
        return self


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/cadence/config.toml (if exists)
    3. Environment variables (CADENCE_*)
    4. cli_overrides (passed from Typer or the HTTP layer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
