"""
Configuration module for codeindex.

Provides strongly-typed configuration with pydantic, supporting both
file-based and environment variable configuration, plus the feature gate
that tells the orchestrator whether indexing is fully configured.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


class EmbedderProvider(str, Enum):
    """Supported embedding providers."""

    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai_compatible"
    OLLAMA = "ollama"


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: EmbedderProvider = Field(
        default=EmbedderProvider.OPENAI,
        description="Embedding provider to use",
    )
    model_name: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name",
    )
    dimension: int = Field(
        default=1536,
        ge=64,
        le=4096,
        description="Embedding dimension",
    )
    batch_size: int = Field(
        default=64,
        ge=1,
        le=2048,
        description="Maximum texts per embedding request",
    )
    api_key: str | None = Field(
        default=None,
        description="API key for the embedding provider",
    )
    base_url: str | None = Field(
        default=None,
        description="Base URL for openai-compatible and ollama endpoints",
    )
    timeout_seconds: int = Field(
        default=60,
        ge=5,
        le=600,
        description="Request timeout in seconds",
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Client-level retry attempts",
    )


class VectorStoreConfig(BaseModel):
    """Vector collection configuration."""

    collection_prefix: str = Field(
        default="ws",
        min_length=1,
        description="Prefix for per-workspace collection names",
    )
    max_elements: int = Field(
        default=50000,
        ge=1000,
        le=10000000,
        description="Initial collection capacity (grows on demand)",
    )
    hnsw_m: int = Field(
        default=16,
        ge=4,
        le=64,
        description="HNSW M parameter (connections per node)",
    )
    hnsw_ef_construction: int = Field(
        default=200,
        ge=50,
        le=500,
        description="HNSW ef_construction (index build quality)",
    )
    hnsw_ef_search: int = Field(
        default=100,
        ge=10,
        le=500,
        description="HNSW ef_search (query quality vs speed)",
    )


class ChunkingConfig(BaseModel):
    """Code block splitting configuration."""

    min_block_chars: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Minimum characters per block",
    )
    max_block_chars: int = Field(
        default=1000,
        ge=100,
        le=20000,
        description="Target maximum characters per block",
    )
    max_chars_tolerance: float = Field(
        default=1.15,
        ge=1.0,
        le=2.0,
        description="Factor by which a block may exceed max_block_chars",
    )


class ScannerConfig(BaseModel):
    """Full workspace scan configuration."""

    batch_segment_threshold: int = Field(
        default=60,
        ge=1,
        le=1000,
        description="Blocks accumulated before a batch is embedded",
    )
    max_batch_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per batch before it is reported as failed",
    )
    initial_retry_delay_ms: int = Field(
        default=500,
        ge=0,
        le=60000,
        description="Delay before the first retry, doubled on each attempt",
    )
    max_file_size_kb: int = Field(
        default=1024,
        ge=10,
        le=10000,
        description="Maximum file size to index in KB",
    )


class WatcherConfig(BaseModel):
    """File system watcher configuration."""

    debounce_ms: int = Field(
        default=500,
        ge=0,
        le=5000,
        description="Debounce delay in milliseconds",
    )
    ignore_patterns: list[str] = Field(
        default_factory=lambda: [
            "**/.git/**",
            "**/.hg/**",
            "**/.svn/**",
            "**/.codeindex/**",
            "**/node_modules/**",
            "**/__pycache__/**",
            "**/*.pyc",
            "**/venv/**",
            "**/.venv/**",
            "**/dist/**",
            "**/build/**",
            "**/.tox/**",
            "**/coverage/**",
            "**/*.egg-info/**",
            "**/target/**",
            "**/vendor/**",
        ],
        description="Glob patterns to ignore",
    )
    watch_extensions: list[str] = Field(
        default_factory=lambda: [
            ".py",
            ".js",
            ".ts",
            ".tsx",
            ".jsx",
            ".go",
            ".rs",
            ".java",
            ".c",
            ".cpp",
            ".h",
            ".hpp",
            ".cs",
            ".rb",
            ".php",
            ".swift",
            ".kt",
            ".scala",
            ".md",
            ".rst",
            ".json",
            ".yaml",
            ".yml",
            ".toml",
        ],
        description="File extensions to index",
    )


class TelemetryConfig(BaseModel):
    """Telemetry and metrics configuration."""

    enabled: bool = Field(
        default=True,
        description="Enable local telemetry collection",
    )
    retention_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Metrics retention period in days",
    )


class Config(BaseSettings):
    """
    Main codeindex configuration.

    Can be configured via:
    1. Configuration file (codeindex.toml or codeindex.yaml)
    2. Environment variables with CODEINDEX_ prefix
    3. Programmatic overrides
    """

    model_config = SettingsConfigDict(
        env_prefix="CODEINDEX_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    enabled: bool = Field(
        default=True,
        description="Enable code indexing",
    )
    workspace_root: Path | None = Field(
        default=None,
        description="Workspace root directory (None when no workspace is open)",
    )
    data_dir: Path = Field(
        default=Path(".codeindex"),
        description="Data directory (relative to workspace_root)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("workspace_root", mode="before")
    @classmethod
    def resolve_workspace_root(cls, v: Path | str | None) -> Path | None:
        """Resolve workspace root to absolute path."""
        if v is None or v == "":
            return None
        path = Path(v) if isinstance(v, str) else v
        return path.resolve()

    @property
    def absolute_data_dir(self) -> Path:
        """Get absolute path to data directory."""
        if self.data_dir.is_absolute():
            return self.data_dir
        base = self.workspace_root or Path.cwd()
        return base / self.data_dir

    @property
    def workspace_id(self) -> str:
        """Stable short identifier for the workspace."""
        source = str(self.workspace_root or Path.cwd())
        return hashlib.sha256(source.encode()).hexdigest()[:16]

    @property
    def collection_name(self) -> str:
        """Name of the workspace's vector collection."""
        return f"{self.vector_store.collection_prefix}-{self.workspace_id}"

    @property
    def collections_dir(self) -> Path:
        """Directory holding persisted vector collections."""
        return self.absolute_data_dir / "collections"

    @property
    def cache_db_path(self) -> Path:
        """Get absolute path to the file-hash cache database."""
        return self.absolute_data_dir / f"cache-{self.workspace_id}.db"

    @property
    def metrics_path(self) -> Path:
        """Get absolute path to metrics database."""
        return self.absolute_data_dir / "metrics.db"

    def ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        self.absolute_data_dir.mkdir(parents=True, exist_ok=True)
        self.collections_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_file(cls, path: Path) -> "Config":
        """Load configuration from a TOML, YAML or JSON file."""
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        content = path.read_text()

        if suffix == ".toml":
            import tomllib

            data = tomllib.loads(content)
        elif suffix in (".yaml", ".yml"):
            import yaml

            data = yaml.safe_load(content) or {}
        elif suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

        return cls(**data)

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return self.model_dump()


class ConfigManager:
    """
    Feature gate over a Config.

    Answers whether indexing is enabled and fully configured, and whether a
    configuration change requires the indexing services to be rebuilt.
    """

    def __init__(self, config: Config) -> None:
        self.config = config

    @property
    def is_feature_enabled(self) -> bool:
        return self.config.enabled

    @property
    def is_feature_configured(self) -> bool:
        """True when the embedding provider has everything it needs."""
        embedding = self.config.embedding

        if embedding.provider == EmbedderProvider.OPENAI:
            return bool(embedding.api_key)
        if embedding.provider == EmbedderProvider.OLLAMA:
            return bool(embedding.base_url)
        if embedding.provider == EmbedderProvider.OPENAI_COMPATIBLE:
            return bool(embedding.base_url and embedding.api_key)
        return False

    def requires_restart(self, new_config: Config) -> bool:
        """Check whether switching to new_config invalidates running services."""
        old = self.config
        if old.enabled != new_config.enabled:
            return True
        if old.workspace_root != new_config.workspace_root:
            return True

        old_emb, new_emb = old.embedding, new_config.embedding
        return (
            old_emb.provider != new_emb.provider
            or old_emb.model_name != new_emb.model_name
            or old_emb.dimension != new_emb.dimension
            or old_emb.base_url != new_emb.base_url
            or old_emb.api_key != new_emb.api_key
        )

    def update(self, new_config: Config) -> bool:
        """
        Replace the active configuration.

        Returns:
            True if the change requires a service restart.
        """
        restart = self.requires_restart(new_config)
        self.config = new_config
        logger.info(
            "Configuration updated",
            requires_restart=restart,
            configured=self.is_feature_configured,
        )
        return restart


def load_config(
    config_path: Path | None = None,
    workspace_root: Path | None = None,
) -> Config:
    """
    Load configuration with automatic discovery.

    Priority:
    1. Explicit config_path if provided
    2. codeindex.toml in workspace_root
    3. .codeindex/config.toml in workspace_root
    4. codeindex.yaml / .codeindex/config.yaml in workspace_root
    5. Default configuration
    """
    if config_path and config_path.exists():
        config = Config.from_file(config_path)
        if workspace_root is not None:
            config = config.model_copy(update={"workspace_root": workspace_root.resolve()})
        return config

    if workspace_root is None:
        return Config()

    candidates = [
        workspace_root / "codeindex.toml",
        workspace_root / ".codeindex" / "config.toml",
        workspace_root / "codeindex.yaml",
        workspace_root / ".codeindex" / "config.yaml",
    ]

    for candidate in candidates:
        if candidate.exists():
            config = Config.from_file(candidate)
            return config.model_copy(update={"workspace_root": workspace_root.resolve()})

    return Config(workspace_root=workspace_root)
