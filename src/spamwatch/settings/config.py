"""Configuration loader for spamwatch services using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "SPAMWATCH_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "SPAMWATCH_SETTINGS_FILE"
MAX_TIMEOUT_SECONDS = 300.0


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name.

    Args:
        explicit_env: Environment value supplied directly by the caller.

    Returns:
        A stripped environment name, falling back to ``DEFAULT_ENV``.
    """

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution."""

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority(include_missing: bool = False) -> tuple[Path, ...]:
    """Return config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    if include_missing:
        return tuple(ordered)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


def _read_env_value(*keys: str) -> str | None:
    """Return the first present environment variable from ``keys``."""

    for key in keys:
        value = os.getenv(key)
        if value is not None:
            return value
    return None


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class APISettings(BaseSettings):
    """HTTP surface configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    host: str = Field(
        default="127.0.0.1",
        validation_alias=AliasChoices("API_HOST", "API__HOST"),
    )
    port: int = Field(
        default=8000,
        validation_alias=AliasChoices("API_PORT", "API__PORT"),
    )
    rate_limit_per_minute: int = Field(
        default=120,
        ge=0,
        validation_alias=AliasChoices("API_RATE_LIMIT_PER_MINUTE", "API__RATE_LIMIT_PER_MINUTE"),
    )
    require_api_key: bool = Field(
        default=False,
        validation_alias=AliasChoices("API_REQUIRE_API_KEY", "API__REQUIRE_API_KEY"),
    )
    key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("API_KEY", "API__KEY"),
    )
    header_name: str = Field(
        default="X-API-KEY",
        validation_alias=AliasChoices("API_HEADER_NAME", "API__HEADER_NAME"),
    )


class MoralisSettings(BaseSettings):
    """Moralis NFT API credentials and limits."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("MORALIS_ENABLED", "MORALIS__ENABLED"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("MORALIS_API_KEY", "MORALIS__API_KEY"),
    )
    base_url: str = Field(
        default="https://deep-index.moralis.io/api/v2",
        validation_alias=AliasChoices("MORALIS_BASE_URL", "MORALIS__BASE_URL"),
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("MORALIS_TIMEOUT_SECONDS", "MORALIS__TIMEOUT_SECONDS"),
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("MORALIS_HEALTH_CHECK_TIMEOUT_SECONDS", "MORALIS__HEALTH_CHECK_TIMEOUT_SECONDS"),
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("MORALIS_MAX_ATTEMPTS", "MORALIS__MAX_ATTEMPTS"),
    )


class PinaxSettings(BaseSettings):
    """Pinax SQL endpoint credentials and limits."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PINAX_ENABLED", "PINAX__ENABLED"),
    )
    endpoint: str = Field(
        default="https://api.pinax.network/sql",
        validation_alias=AliasChoices("PINAX_ENDPOINT", "PINAX__ENDPOINT"),
    )
    api_user: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PINAX_API_USER", "PINAX__API_USER"),
    )
    api_auth: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PINAX_API_AUTH", "PINAX__API_AUTH"),
    )
    db_name: str = Field(
        default="mainnet:evm-nft-tokens@v0.6.2",
        validation_alias=AliasChoices("PINAX_DB_NAME", "PINAX__DB_NAME"),
    )
    timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("PINAX_TIMEOUT_SECONDS", "PINAX__TIMEOUT_SECONDS"),
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("PINAX_HEALTH_CHECK_TIMEOUT_SECONDS", "PINAX__HEALTH_CHECK_TIMEOUT_SECONDS"),
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("PINAX_MAX_ATTEMPTS", "PINAX__MAX_ATTEMPTS"),
    )


class RetrySettings(BaseSettings):
    """Exponential backoff applied to transient outbound failures."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    base_delay_seconds: float = Field(
        default=0.1,
        ge=0,
        validation_alias=AliasChoices("RETRY_BASE_DELAY_SECONDS", "RETRY__BASE_DELAY_SECONDS"),
    )
    max_delay_seconds: float = Field(
        default=10.0,
        ge=0,
        validation_alias=AliasChoices("RETRY_MAX_DELAY_SECONDS", "RETRY__MAX_DELAY_SECONDS"),
    )
    jitter: bool = Field(
        default=True,
        validation_alias=AliasChoices("RETRY_JITTER", "RETRY__JITTER"),
    )


class ProviderChainSettings(BaseModel):
    """Per-chain override for one provider; ``None`` keeps the provider default."""

    model_config = {"extra": "ignore"}

    enabled: bool | None = None
    namespace: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0, le=MAX_TIMEOUT_SECONDS)
    max_attempts: int | None = Field(default=None, ge=1)
    base_url: str | None = None


class ChainSettings(BaseModel):
    """Override for one chain entry of the built-in chain table."""

    model_config = {"extra": "ignore"}

    name: str | None = None
    enabled: bool | None = None
    aliases: list[str] | None = None
    providers: dict[str, ProviderChainSettings] = Field(default_factory=dict)


class ClassifierSettings(BaseSettings):
    """Completion model, registries and sampling bounds for spam classification."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("CLASSIFIER_ENABLED", "CLASSIFIER__ENABLED"),
    )
    provider: Literal["openai", "ollama", "mock"] = Field(
        default="openai",
        validation_alias=AliasChoices("CLASSIFIER_PROVIDER", "CLASSIFIER__PROVIDER"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "CLASSIFIER__API_KEY"),
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        validation_alias=AliasChoices("OPENAI_BASE_URL", "CLASSIFIER__BASE_URL"),
    )
    ollama_base_url: str = Field(
        default="http://127.0.0.1:11434",
        validation_alias=AliasChoices("OLLAMA_BASE_URL", "CLASSIFIER__OLLAMA_BASE_URL"),
    )
    model_type: str = Field(
        default="spam_classification",
        validation_alias=AliasChoices("CLASSIFIER_MODEL_TYPE", "CLASSIFIER__MODEL_TYPE"),
    )
    model_version: str = Field(
        default="latest",
        validation_alias=AliasChoices("CLASSIFIER_MODEL_VERSION", "CLASSIFIER__MODEL_VERSION"),
    )
    prompt_version: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLASSIFIER_PROMPT_VERSION", "CLASSIFIER__PROMPT_VERSION"),
    )
    model_registry_path: Path = Field(
        default=CONFIG_DIR / "models.yaml",
        validation_alias=AliasChoices("CLASSIFIER_MODEL_REGISTRY_PATH", "CLASSIFIER__MODEL_REGISTRY_PATH"),
    )
    prompt_registry_path: Path = Field(
        default=CONFIG_DIR / "prompts.json",
        validation_alias=AliasChoices("CLASSIFIER_PROMPT_REGISTRY_PATH", "CLASSIFIER__PROMPT_REGISTRY_PATH"),
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        validation_alias=AliasChoices("CLASSIFIER_TEMPERATURE", "CLASSIFIER__TEMPERATURE"),
    )
    max_tokens: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("CLASSIFIER_MAX_TOKENS", "CLASSIFIER__MAX_TOKENS"),
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("CLASSIFIER_TIMEOUT_SECONDS", "CLASSIFIER__TIMEOUT_SECONDS"),
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices(
            "CLASSIFIER_HEALTH_CHECK_TIMEOUT_SECONDS", "CLASSIFIER__HEALTH_CHECK_TIMEOUT_SECONDS"
        ),
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices("CLASSIFIER_MAX_ATTEMPTS", "CLASSIFIER__MAX_ATTEMPTS"),
    )


class CacheSettings(BaseSettings):
    """Prediction cache bounds."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("CACHE_ENABLED", "CACHE__ENABLED"),
    )
    ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        validation_alias=AliasChoices("CACHE_TTL_SECONDS", "CACHE__TTL_SECONDS"),
    )
    max_entries: int = Field(
        default=10000,
        ge=1,
        validation_alias=AliasChoices("CACHE_MAX_ENTRIES", "CACHE__MAX_ENTRIES"),
    )


class MetadataCacheSettings(BaseSettings):
    """Provider metadata cache bounds; also caches "not found on any provider"."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("METADATA_CACHE_ENABLED", "METADATA_CACHE__ENABLED"),
    )
    ttl_seconds: float = Field(
        default=21600.0,
        gt=0,
        validation_alias=AliasChoices("METADATA_CACHE_TTL_SECONDS", "METADATA_CACHE__TTL_SECONDS"),
    )
    max_entries: int = Field(
        default=50000,
        ge=1,
        validation_alias=AliasChoices("METADATA_CACHE_MAX_ENTRIES", "METADATA_CACHE__MAX_ENTRIES"),
    )


class PipelineSettings(BaseSettings):
    """Fan-out width, provider priority and request bounds for the orchestrator."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    fanout_width: int = Field(
        default=16,
        ge=1,
        validation_alias=AliasChoices("PIPELINE_FANOUT_WIDTH", "PIPELINE__FANOUT_WIDTH"),
    )
    provider_priority: list[str] = Field(
        default_factory=lambda: ["moralis", "pinax"],
        validation_alias=AliasChoices("PIPELINE_PROVIDER_PRIORITY", "PIPELINE__PROVIDER_PRIORITY"),
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=MAX_TIMEOUT_SECONDS,
        validation_alias=AliasChoices("PIPELINE_REQUEST_TIMEOUT_SECONDS", "PIPELINE__REQUEST_TIMEOUT_SECONDS"),
    )
    max_addresses_per_request: int = Field(
        default=100,
        ge=1,
        validation_alias=AliasChoices("PIPELINE_MAX_ADDRESSES", "PIPELINE__MAX_ADDRESSES_PER_REQUEST"),
    )

    @field_validator("provider_priority", mode="before")
    @classmethod
    def _split_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [chunk.strip().lower() for chunk in value.split(",") if chunk.strip()]
        return value


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    otlp_endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_OTLP_ENDPOINT", "OBSERVABILITY__OTLP_ENDPOINT"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="spamwatch",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )
    service_name: str = Field(
        default="spamwatch-api",
        validation_alias=AliasChoices("OBS_SERVICE_NAME", "OBSERVABILITY__SERVICE_NAME"),
    )


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    api: APISettings = Field(default_factory=APISettings)
    moralis: MoralisSettings = Field(default_factory=MoralisSettings)
    pinax: PinaxSettings = Field(default_factory=PinaxSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    classifier: ClassifierSettings = Field(default_factory=ClassifierSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    metadata_cache: MetadataCacheSettings = Field(default_factory=MetadataCacheSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    chains: dict[str, ChainSettings] = Field(default_factory=dict)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="SPAMWATCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @field_validator("chains", mode="after")
    @classmethod
    def _check_chain_keys(cls, value: dict[str, ChainSettings]) -> dict[str, ChainSettings]:
        for key in value:
            if not str(key).strip().isdigit():
                raise ValueError(f"chain override keys must be numeric chain IDs, got {key!r}")
        return value

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative registry paths once the model is initialised."""

        classifier_updates = {}
        if not self.classifier.model_registry_path.is_absolute():
            classifier_updates["model_registry_path"] = (
                self.project_root / self.classifier.model_registry_path
            ).resolve()
        if not self.classifier.prompt_registry_path.is_absolute():
            classifier_updates["prompt_registry_path"] = (
                self.project_root / self.classifier.prompt_registry_path
            ).resolve()
        if classifier_updates:
            object.__setattr__(self, "classifier", self.classifier.model_copy(update=classifier_updates))
        return self

    @model_validator(mode="after")
    def _apply_environment_overrides(self) -> "Settings":
        """Force environment-specific defaults after basic resolution."""

        if self.env.lower() == "local":
            object.__setattr__(self, "classifier", self.classifier.model_copy(update={"provider": "mock"}))
            observability_update = {"structured_logging": False, "otlp_endpoint": None}
            object.__setattr__(self, "observability", self.observability.model_copy(update=observability_update))

        provider_override = _read_env_value(
            "SPAMWATCH_CLASSIFIER__PROVIDER",
            "SPAMWATCH_CLASSIFIER_PROVIDER",
            "CLASSIFIER__PROVIDER",
            "CLASSIFIER_PROVIDER",
        )
        if provider_override:
            classifier_updates = {"provider": provider_override.strip().lower()}
            object.__setattr__(self, "classifier", self.classifier.model_copy(update=classifier_updates))

        return self

    @property
    def log_level(self) -> str:
        """str: Effective logging level for the running process."""

        return self.runtime.log_level

    @property
    def is_local(self) -> bool:
        """bool: True when the active environment is ``local``."""

        return self.env.lower() == "local"


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "Settings",
    "ChainSettings",
    "ProviderChainSettings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
