"""
productmcp Configuration - Configuration loading and validation.

This module provides the Config class for managing productmcp configuration
from global (~/.productmcp/config.yaml), local (.productmcp/config.yaml) and
explicitly named sources.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


def _default_server_command() -> List[str]:
    return [sys.executable, "-m", "productmcp.server"]


class ServerConfig(BaseModel):
    """How the client launches and talks to the tool server."""

    command: List[str] = Field(default_factory=_default_server_command)
    env: Dict[str, str] = Field(default_factory=dict)
    request_timeout: Optional[float] = None  # None blocks until the child answers
    shutdown_timeout: float = 5.0

    @field_validator("command")
    @classmethod
    def _command_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("server.command must name an executable")
        return value


class ProductConfig(BaseModel):
    """One row of the product table."""

    id: str
    name: str
    price: float = Field(ge=0)


DEFAULT_PRODUCTS = [
    {"id": "1", "name": "Laptop", "price": 1000.0},
    {"id": "2", "name": "Smartphone", "price": 500.0},
    {"id": "3", "name": "Tablet", "price": 300.0},
]


class CatalogConfig(BaseModel):
    """Product table and the limits the tool handlers enforce."""

    products: List[ProductConfig] = Field(
        default_factory=lambda: [ProductConfig(**p) for p in DEFAULT_PRODUCTS]
    )
    min_quantity: int = 1
    max_quantity: int = 1000
    discount_floor: float = 0.0  # exclusive
    discount_ceiling: float = 100.0  # exclusive

    @model_validator(mode="after")
    def _check_bounds(self) -> "CatalogConfig":
        if self.min_quantity < 1:
            raise ValueError("catalog.min_quantity must be at least 1")
        if self.max_quantity < self.min_quantity:
            raise ValueError("catalog.max_quantity must not be below min_quantity")
        if self.discount_ceiling <= self.discount_floor:
            raise ValueError("catalog.discount_ceiling must be above discount_floor")
        ids = [p.id for p in self.products]
        if len(ids) != len(set(ids)):
            raise ValueError("catalog.products contains duplicate ids")
        return self


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""

    api_key: Optional[str] = None
    api_base: Optional[str] = None
    enabled: bool = True


class AgentConfig(BaseModel):
    """Configuration for the translator and the presentation rewrite."""

    model: Optional[str] = None
    max_tokens: int = 1024
    temperature: float = 0.0
    timeout: int = 60
    polish: bool = True


class LoggingConfig(BaseModel):
    """Logging level shared by the client and the server."""

    level: str = "WARNING"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown logging level: {value}")
        return value


class ProductMCPConfig(BaseModel):
    """Complete productmcp configuration schema."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Config:
    """
    productmcp configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.productmcp/config.yaml
    - Local: .productmcp/config.yaml (nearest one walking up from cwd)
    - Explicit: a file named on the command line
    - Overrides: values set programmatically (command-line flags)

    Later sources override earlier ones.

    Example:
        >>> config = Config.load()
        >>> config.merged.catalog.max_quantity
        1000
        >>> config.set_override("agent.model", "openai/gpt-4o")
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".productmcp"
    LOCAL_CONFIG_DIR = Path(".productmcp")

    ENV_API_KEYS = {
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
        "groq": "GROQ_API_KEY",
        "together": "TOGETHER_API_KEY",
    }

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        explicit_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            explicit_config: Configuration from a file named by the caller.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._explicit_config = explicit_config or {}
        self._overrides: Dict[str, Any] = {}
        self._merged: Optional[ProductMCPConfig] = None

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        """
        Load configuration from default locations plus an optional file.

        Args:
            path: Explicit configuration file. It must exist when given.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        explicit_config: Dict[str, Any] = {}
        if path is not None:
            path = Path(path)
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            explicit_config = cls._load_yaml(path)

        return cls(
            global_config=global_config,
            local_config=local_config,
            explicit_config=explicit_config,
        )

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return data

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / cls.LOCAL_CONFIG_DIR / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        merged = self._deep_merge(self._global_config.copy(), self._local_config)
        merged = self._deep_merge(merged, self._explicit_config)
        return self._deep_merge(merged, self._overrides)

    @property
    def merged(self) -> ProductMCPConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = ProductMCPConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    def set_override(self, dotted_key: str, value: Any) -> None:
        """
        Override a single value, e.g. ``set_override("agent.model", "groq/llama3")``.

        Overrides win over every file source.
        """
        node = self._overrides
        *parents, leaf = dotted_key.split(".")
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
        self._merged = None  # Reset cache

    def get_default_model(self) -> Optional[str]:
        """Get the translator model from configuration or the environment."""
        if self.merged.agent.model:
            return self.merged.agent.model
        return os.environ.get("PRODUCTMCP_MODEL")

    def get_provider_config(self, provider_name: str) -> Optional[ProviderConfig]:
        """Get configuration for a specific provider."""
        return self.merged.providers.get(provider_name)

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """
        Get API key for a provider.

        Checks config first, then environment variables.
        """
        provider = self.get_provider_config(provider_name)
        if provider and provider.api_key:
            return provider.api_key

        env_var = self.ENV_API_KEYS.get(provider_name)
        if env_var:
            return os.environ.get(env_var)

        return None

    def to_yaml(self) -> str:
        """Render the validated merged configuration as YAML."""
        return yaml.dump(self.merged.model_dump(), default_flow_style=False, sort_keys=False)

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
