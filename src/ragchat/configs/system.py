from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field


class ThirdPartyConfig(BaseModel):
    """Configuration for third-party integrations."""

    redis_uri: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URI (L2 cache)",
    )
    search_endpoint: str = Field(
        default="http://localhost:8090/api/v1/search",
        description="Hybrid search service endpoint URL",
    )
    model_server_endpoint: str = Field(
        default="http://localhost:8080/api/v1/",
        description="OpenAI-compatible model server endpoint URL",
    )


class LLMConfig(BaseModel):
    """Generation collaborator settings."""

    model_name: str = Field(
        default="gemini-2.5-flash", description="Model identifier sent with requests"
    )
    api_key: str = Field(default="", description="API key for the model server")
    timeout_seconds: float = Field(
        default=60.0, gt=0, description="Timeout for a single generation call"
    )

    @property
    def timeout(self) -> timedelta:
        return timedelta(seconds=self.timeout_seconds)


class EmbeddingConfig(BaseModel):
    """OpenAI-compatible embedding endpoint settings."""

    endpoint: str = Field(
        default="http://localhost:8080/api/v1/",
        description="Embedding endpoint base URL",
    )
    api_key: str = Field(default="", description="API key for the embedding server")
    model_name: str = Field(
        default="embed-english-v4.0", description="Embedding model identifier"
    )
    timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout for a single embedding call"
    )


class SearchConfig(BaseModel):
    """Search collaborator settings."""

    timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for a single search call"
    )
    max_results: int = Field(
        default=10, ge=1, description="Default number of results requested"
    )
    min_relevance: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Results below this relevance never enter the context",
    )
    cache_ttl_seconds: int = Field(
        default=300, ge=1, description="TTL for cached search results"
    )


class ContextConfig(BaseModel):
    """Context window assembly settings."""

    max_context_length: int = Field(
        default=4000, ge=1, description="Token budget for documents + history"
    )
    document_share: float = Field(
        default=0.7,
        gt=0.0,
        le=1.0,
        description="Fraction of the budget reserved for document context",
    )
    history_window: int = Field(
        default=6,
        ge=0,
        description="Most recent turns considered when prioritising recency",
    )


class PruningConfig(BaseModel):
    """Defaults for conversation-history pruning."""

    max_messages: int = Field(default=20, ge=1)
    max_context_chars: int = Field(default=6000, ge=1)
    max_context_tokens: int = Field(default=1500, ge=1)
    budget_unit: Literal["tokens", "chars"] = Field(default="tokens")
    preserve_system_message: bool = Field(default=True)
    min_recent_messages: int = Field(default=3, ge=0)
    prioritize_recent: bool = Field(default=True)


class CacheConfig(BaseModel):
    """Two-level cache configuration settings."""

    enabled: bool = Field(default=True, description="Enable caching")
    use_redis: bool = Field(
        default=True, description="Use Redis as the L2 cache when reachable"
    )
    l1_max_size: int = Field(
        default=1000, ge=1, description="Maximum number of entries in the L1 cache"
    )
    l1_ttl_seconds: int = Field(
        default=300, ge=1, description="Default TTL for L1 entries"
    )
    l2_ttl_seconds: int = Field(
        default=3600, ge=1, description="Default TTL for L2 entries"
    )
    key_prefix: str = Field(default="rag:cache:", description="Redis key prefix")


class LoggingConfig(BaseModel):
    """Root logger settings."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(
        default=True, description="Emit JSON lines instead of coloured text"
    )
    quiet_loggers: list[str] = Field(
        default_factory=lambda: ["httpx", "httpcore", "openai", "opentelemetry"],
        description="Third-party loggers capped at WARNING",
    )


class TracingConfig(BaseModel):
    """OpenTelemetry tracing settings."""

    enabled: bool = Field(default=False)
    endpoint: str = Field(default="", description="OTLP HTTP traces endpoint")
    service_name: str = Field(default="ragchat")
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    excluded_urls: list[str] = Field(
        default_factory=lambda: ["/health", "/metrics"],
        description="Paths excluded from HTTP instrumentation",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra OTLP export headers, e.g. Authorization",
    )
