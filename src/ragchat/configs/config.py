"""Configuration management using pydantic-settings.

**Not a singleton** -- each call to ``get_app_config()`` re-reads config
from disk so that edits to the YAML file are picked up without a
restart.

Priority order (highest first):

1. Environment variables (``RAGCHAT_`` prefix, ``__`` nested delimiter)
2. Override YAML named by ``RAGCHAT_CONFIG_FILE`` (deployment mounts)
3. ``.env`` dotenv file
4. Static YAML (``configs/config.yaml``)
5. Init defaults / field defaults
6. File secrets

The override path is looked up on every call, so pointing the variable at
a new file takes effect on the next ``get_app_config()``.
"""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .system import (
    CacheConfig,
    ContextConfig,
    EmbeddingConfig,
    LLMConfig,
    LoggingConfig,
    PruningConfig,
    SearchConfig,
    ThirdPartyConfig,
    TracingConfig,
)

# ---------------------------------------------------------------------------
# Path constants
# ---------------------------------------------------------------------------

CONFIG_PY_PATH = Path(__file__).resolve()
PROJECT_ROOT = CONFIG_PY_PATH.parent.parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "configs"

STATIC_CONFIG_FILE = CONFIG_DIR / "config.yaml"

DOTENV_FILE_PATH = PROJECT_ROOT / ".env"
ENV_DELIMITER = "__"
ENV_PREFIX = "RAGCHAT_"
CONFIG_FILE_ENV = "RAGCHAT_CONFIG_FILE"

DEFAULT_ENCODING = "utf-8"


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=DOTENV_FILE_PATH,
        env_file_encoding=DEFAULT_ENCODING,
        env_nested_delimiter=ENV_DELIMITER,
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
        yaml_file=STATIC_CONFIG_FILE,
        yaml_file_encoding=DEFAULT_ENCODING,
    )

    third_party: ThirdPartyConfig = Field(
        default_factory=ThirdPartyConfig,
        description="Third-party service configurations",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="Generation collaborator settings",
    )

    embedding: EmbeddingConfig = Field(
        default_factory=EmbeddingConfig,
        description="OpenAI-compatible embedding endpoint settings",
    )

    search: SearchConfig = Field(
        default_factory=SearchConfig,
        description="Search collaborator settings",
    )

    context: ContextConfig = Field(
        default_factory=ContextConfig,
        description="Context window assembly settings",
    )

    pruning: PruningConfig = Field(
        default_factory=PruningConfig,
        description="Conversation-history pruning defaults",
    )

    cache: CacheConfig = Field(
        default_factory=CacheConfig,
        description="Cache configuration settings",
    )

    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging settings",
    )

    tracing: TracingConfig = Field(
        default_factory=TracingConfig,
        description="OpenTelemetry tracing settings",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
            file_secret_settings,
        ]
        override = override_config_file()
        if override is not None:
            sources.insert(1, YamlConfigSettingsSource(settings_cls, yaml_file=override))
        return tuple(sources)


def override_config_file() -> Path | None:
    """Deployment override YAML, if ``RAGCHAT_CONFIG_FILE`` names an existing file."""
    raw = os.environ.get(CONFIG_FILE_ENV)
    if not raw:
        return None
    path = Path(raw)
    return path if path.is_file() else None


def get_app_config() -> AppConfig:
    """Get the application configuration.

    Re-reads ``configs/config.yaml`` on every call.
    """
    return AppConfig()
