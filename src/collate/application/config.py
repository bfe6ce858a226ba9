import random
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from collate.application.session_engine import RequeuePolicy
from collate.domain.constants import (
    PACING_DELAY,
    REQUEST_TIMEOUT,
    REQUEUE_BASE_FRACTION,
    REQUEUE_JITTER_FRACTION,
    REQUEUE_MIN_REMAINING,
)

CONFIG_FILES = [
    Path(".config/collate/config.toml"),
    Path(".collate.toml"),
]


def _config_candidates() -> list[Path]:
    return [Path.home() / f for f in CONFIG_FILES]


class AppConfig(BaseSettings):
    """
    Configuration model for collate.
    Supports loading from:
    1. Manual overrides (CLI / API)
    2. Environment variables (COLLATE_*)
    3. Config file (~/.config/collate/config.toml or ~/.collate.toml)
    """

    model_config = SettingsConfigDict(
        env_prefix="COLLATE_",
        extra="ignore",
    )

    # Card store
    backend: Literal["yaml", "http"] = "yaml"
    deck_path: Path = Field(default_factory=lambda: Path.cwd() / "collate.yaml")
    store_url: str = "http://localhost:8080/api"
    store_token: str | None = None
    request_timeout: float = REQUEST_TIMEOUT

    # Study defaults
    default_mode: Literal["smart", "all"] = "smart"
    default_limit: int | None = None
    pacing_delay: float = PACING_DELAY

    # Requeue heuristics
    requeue_min_remaining: int = REQUEUE_MIN_REMAINING
    requeue_base_fraction: float = REQUEUE_BASE_FRACTION
    requeue_jitter_fraction: float = REQUEUE_JITTER_FRACTION

    # Deterministic shuffling when set
    seed: int | None = None

    verbose: int = 1

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

        # First existing file wins
        toml_file = next((f for f in _config_candidates() if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("deck_path", mode="before")
    @classmethod
    def resolve_deck_path(cls, v: Any) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("default_limit")
    @classmethod
    def check_limit(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("default_limit must be a positive integer")
        return v

    @field_validator("pacing_delay")
    @classmethod
    def check_pacing_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("pacing_delay cannot be negative")
        return v

    def requeue_policy(self) -> RequeuePolicy:
        return RequeuePolicy(
            min_remaining=self.requeue_min_remaining,
            base_fraction=self.requeue_base_fraction,
            jitter_fraction=self.requeue_jitter_fraction,
        )

    def make_rng(self) -> random.Random:
        return random.Random(self.seed)


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/collate/config.toml (if exists)
    3. Environment variables (COLLATE_*)
    4. cli_overrides (passed from Typer or the API), None values dropped
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
