"""Central configuration for the service intent resolution engine.

This module uses Pydantic Settings for validation and env management.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class OpenAISettings(BaseSettings):
    """Credentials for the embedding and generation APIs."""
    model_config = SettingsConfigDict(env_prefix="OPENAI_", extra="ignore")

    api_key: SecretStr | None = Field(default=None, description="Opaque API key passed through to the client")
    base_url: str | None = Field(default=None, description="Override for OpenAI-compatible servers")
    organization: str | None = Field(default=None)


class EmbeddingSettings(BaseSettings):
    """Embedding model configuration."""
    model_config = SettingsConfigDict(env_prefix="EMBEDDING_", extra="ignore")

    provider: Literal["openai", "local"] = Field(default="openai", description="Hosted API or local sentence-transformers")
    model_name: str = Field(default="text-embedding-3-small", description="Hosted embedding model")
    local_model_name: str = Field(
        default="sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2",
        description="Hugging Face model name for the local provider",
    )
    device: Literal["cpu", "cuda", "mps"] = Field(default="cpu")
    normalize_embeddings: bool = Field(default=True)
    dim: int | None = Field(default=None, ge=8, le=8192, description="Expected embedding dimension, unchecked if unset")
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    batch_size: int = Field(default=64, ge=1, le=2048, description="Batch size for offline snapshot builds")


class GenerationSettings(BaseSettings):
    """Generative model configuration."""
    model_config = SettingsConfigDict(env_prefix="GENERATION_", extra="ignore")

    text_model: str = Field(default="gpt-4o-mini")
    vision_model: str = Field(default="gpt-4o-mini")
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    max_tokens: int = Field(default=1000, ge=64, le=8192)
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)


class CatalogSettings(BaseSettings):
    """Catalog snapshot configuration."""
    model_config = SettingsConfigDict(env_prefix="CATALOG_", extra="ignore")

    snapshot_path: str = Field(default="data/services-with-embeddings.json")
    expected_dim: int | None = Field(default=None, ge=1, description="Reject snapshots of another dimension")


class RetrievalSettings(BaseSettings):
    """Candidate retrieval configuration."""
    model_config = SettingsConfigDict(env_prefix="RETRIEVAL_", extra="ignore")

    text_top_k: int = Field(default=40, ge=1, le=500)
    image_top_k: int = Field(default=20, ge=1, le=500)
    document_top_k: int = Field(default=40, ge=1, le=500)
    chat_top_k: int = Field(default=8, ge=1, le=500)
    search_top_k: int = Field(default=10, ge=1, le=500)
    min_score: float | None = Field(
        default=None,
        ge=-1.0,
        le=1.0,
        description="Optional relevance floor; top-K is the only filter when unset",
    )


class ResolverSettings(BaseSettings):
    """Input limits enforced before any external call."""
    model_config = SettingsConfigDict(env_prefix="RESOLVER_", extra="ignore")

    max_input_chars: int = Field(default=12000, ge=100, le=200000)
    max_image_bytes: int = Field(default=15 * 1024 * 1024, ge=1024)
    allowed_image_types: list[str] = Field(
        default_factory=lambda: ["image/jpeg", "image/png", "image/webp", "image/gif"],
    )
    max_chat_messages: int = Field(default=40, ge=1, le=500)


class ImageSettings(BaseSettings):
    """Image preprocessing configuration."""
    model_config = SettingsConfigDict(env_prefix="IMAGE_", extra="ignore")

    max_side: int = Field(default=512, ge=64, le=4096)
    jpeg_quality: int = Field(default=50, ge=10, le=95)


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file: str | None = Field(default=None)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        return v.upper()


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    debug: bool = Field(default=False)
    app_name: str = Field(default="Service Intent Engine")
    version: str = Field(default="0.1.0")

    # Sub-configs
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    image: ImageSettings = Field(default_factory=ImageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
