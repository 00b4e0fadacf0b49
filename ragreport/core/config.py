"""Configuration management for the RAG report generator.

Settings are read once from environment variables (and an optional .env file)
and handed to components through their constructors.
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    RAGREPORT_ENV: str = Field(default="dev", description="Environment: dev, test, prod")

    # Storage
    STORAGE_ROOT: str = Field(default="workspaces", description="Root directory of the local document store")
    MAX_UPLOAD_BYTES: int = Field(default=25_000_000, description="Max size of a single uploaded file")

    # Embeddings
    EMBEDDING_BACKEND: str = Field(
        default="sentence-transformers", description="sentence-transformers, openai or azure"
    )
    EMBEDDING_MODEL: str = Field(default="all-MiniLM-L6-v2", description="Embedding model name")
    EMBEDDING_DEVICE: str = Field(default="cpu", description="Device for local embedding models")

    # Completions
    COMPLETION_BACKEND: str = Field(default="openai", description="openai or azure")
    COMPLETION_MODEL: str = Field(default="gpt-4o-mini", description="Chat model used for answers")
    COMPLETION_TEMPERATURE: float = Field(default=0.0, description="Sampling temperature")
    PROVIDER_MAX_RETRIES: int = Field(default=2, description="Retries passed to the provider SDK")

    # OpenAI
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="OpenAI API key")
    OPENAI_BASE_URL: Optional[str] = Field(default=None, description="OpenAI-compatible base URL")

    # Azure OpenAI
    AZURE_OPENAI_KEY: Optional[str] = Field(default=None, description="Azure OpenAI key")
    AZURE_OPENAI_ENDPOINT: Optional[str] = Field(default=None, description="Azure OpenAI endpoint URL")
    AZURE_OPENAI_VERSION: str = Field(default="2024-05-01-preview", description="Azure OpenAI API version")
    AZURE_OPENAI_CHAT_DEPLOYMENT_NAME: Optional[str] = Field(default=None, description="Chat deployment")
    AZURE_OPENAI_EMBEDDINGS_DEPLOYMENT_NAME: Optional[str] = Field(
        default=None, description="Embeddings deployment"
    )

    # Indexing and retrieval
    CHUNK_SIZE: int = Field(default=1000, description="Characters per chunk")
    CHUNK_OVERLAP: int = Field(default=200, description="Characters shared between neighbouring chunks")
    RETRIEVAL_TOP_K: int = Field(default=5, description="Context chunks retrieved per question")

    # Prompts
    PROMPT_BANK_PATH: Optional[str] = Field(default=None, description="YAML file overriding the prompt bank")

    # API
    API_CORS_ORIGINS: str = Field(default="", description="Comma separated list of allowed origins")

    @property
    def cors_origins(self) -> List[str]:
        origins = [origin.strip() for origin in self.API_CORS_ORIGINS.split(",") if origin.strip()]
        return origins or ["http://localhost:3000", "http://127.0.0.1:3000"]


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, resolved once."""
    return Settings()
