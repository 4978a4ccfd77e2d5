"""Shared fixtures."""

import pytest

from ragchat.configs.config import AppConfig
from ragchat.configs.system import (
    CacheConfig,
    ContextConfig,
    LLMConfig,
    SearchConfig,
    TracingConfig,
)


def make_config(**sections) -> AppConfig:
    """An ``AppConfig`` built only from *sections* and field defaults.

    ``model_construct`` skips the env / YAML sources so tests do not depend
    on the local ``configs/config.yaml`` or the environment.
    """
    sections.setdefault("llm", LLMConfig(model_name="test-model"))
    sections.setdefault("search", SearchConfig(min_relevance=0.0))
    sections.setdefault("context", ContextConfig(max_context_length=4000))
    sections.setdefault("cache", CacheConfig(use_redis=False))
    sections.setdefault("tracing", TracingConfig(enabled=False))
    return AppConfig.model_construct(**sections)


@pytest.fixture
def app_config() -> AppConfig:
    return make_config()
