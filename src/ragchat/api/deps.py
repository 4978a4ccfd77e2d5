"""Centralized FastAPI dependency type aliases.

Import these ``*Dep`` aliases in route modules instead of writing
``Annotated[T, Depends(get_xxx)]`` everywhere.  Each can be overridden
in tests via ``app.dependency_overrides[get_xxx] = ...``.
"""

from typing import Annotated

from fastapi import Depends

from ragchat.configs.config import AppConfig, get_app_config
from ragchat.core.service.deps import get_rag_pipeline
from ragchat.core.service.metrics import MetricsCollector, get_metrics_collector
from ragchat.core.service.pipeline import RagPipeline
from ragchat.infra.cache import CacheManager, get_cache

AppConfigDep = Annotated[AppConfig, Depends(get_app_config)]
RagPipelineDep = Annotated[RagPipeline, Depends(get_rag_pipeline)]
MetricsCollectorDep = Annotated[MetricsCollector, Depends(get_metrics_collector)]
CacheDep = Annotated[CacheManager | None, Depends(get_cache)]
