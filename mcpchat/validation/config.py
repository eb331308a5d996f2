"""
MCPChat Configuration - Configuration loading and validation.

This module provides the Config class for managing MCPChat configuration
from both global (~/.mcpchat/config.yaml) and local (.mcpchat/config.yaml)
sources, with environment variables as a fallback for MCP servers and
provider API keys.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError


DEFAULT_MODEL = "openrouter/mistralai/mistral-7b-instruct:free"
DEFAULT_TAVILY_URL = "https://mcp.tavily.com/mcp/"

ENV_API_KEYS = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "huggingface": "HF_API_KEY",
    "groq": "GROQ_API_KEY",
    "together": "TOGETHER_API_KEY",
}


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class ServerConfig(BaseModel):
    """Configuration for a single remote MCP server."""

    name: str
    url: str
    display_name: Optional[str] = None
    enabled: bool = True
    api_key: Optional[str] = None
    transport: Literal["auto", "sse", "streamable-http"] = "auto"

    @property
    def label(self) -> str:
        return self.display_name or self.name

    def resolved_transport(self) -> str:
        """Servers that need a bearer key speak Streamable HTTP under ``auto``."""
        if self.transport != "auto":
            return self.transport
        return "streamable-http" if self.api_key else "sse"


class MCPConfig(BaseModel):
    """Configuration for MCP tool servers."""

    servers: List[ServerConfig] = Field(default_factory=list)
    request_timeout: float = 60.0


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""

    api_key: Optional[str] = None
    api_base: Optional[str] = None
    default_model: Optional[str] = None
    enabled: bool = True


class AgentConfig(BaseModel):
    """Configuration for the conversation loop."""

    model: Optional[str] = None
    temperature: float = 0.87
    max_tool_iterations: int = 10
    timeout: int = 120
    compression_interval: int = 5
    system_prompt: Optional[str] = None


class MCPChatConfig(BaseModel):
    """Complete MCPChat configuration schema."""

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)


class Config:
    """
    MCPChat configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.mcpchat/config.yaml
    - Local: .mcpchat/config.yaml (project-specific)

    Local configuration overrides global configuration.

    Example:
        >>> config = Config.load()
        >>> servers = config.get_server_configs()
        >>> model = config.get_default_model()
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".mcpchat"

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Config.

        Args:
            global_config: Global configuration dictionary.
            local_config: Local (project) configuration dictionary.
            environ: Environment mapping; defaults to ``os.environ``.
        """
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._environ = os.environ if environ is None else environ
        self._merged: Optional[MCPChatConfig] = None

    @classmethod
    def load(cls) -> "Config":
        """
        Load configuration from default locations.

        Returns:
            Config instance with loaded configuration.
        """
        global_config = cls._load_yaml(cls.GLOBAL_CONFIG_DIR / "config.yaml")
        local_config = cls._load_yaml(cls._find_local_config())

        return cls(global_config=global_config, local_config=local_config)

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Load YAML file if it exists."""
        if path is None or not path.exists():
            return {}

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
                return data if data else {}
        except Exception as e:
            raise ConfigError(f"Failed to load config from {path}: {e}")

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Find the local config file by walking up the directory tree."""
        current = Path.cwd()
        while current != current.parent:
            config_path = current / ".mcpchat" / "config.yaml"
            if config_path.exists():
                return config_path
            current = current.parent
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Get the merged configuration as a dictionary."""
        return self._deep_merge(self._global_config.copy(), self._local_config)

    @property
    def merged(self) -> MCPChatConfig:
        """Get the validated merged configuration."""
        if self._merged is None:
            try:
                self._merged = MCPChatConfig(**self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}")
        return self._merged

    # ── MCP servers ───────────────────────────────────────────────────────

    def get_server_configs(self) -> List[ServerConfig]:
        """
        Effective MCP server list.

        Servers declared in YAML win. Without any, ``MCP_SERVER_URL`` adds a
        local server and ``TAVILY_API_KEY`` adds the Tavily search server.
        """
        if self.merged.mcp.servers:
            return list(self.merged.mcp.servers)

        servers: List[ServerConfig] = []
        primary_url = self._environ.get("MCP_SERVER_URL")
        if primary_url:
            servers.append(ServerConfig(
                name="local",
                url=primary_url,
                display_name="Local MCP Server",
            ))

        tavily_key = self._environ.get("TAVILY_API_KEY")
        if tavily_key:
            servers.append(ServerConfig(
                name="tavily",
                url=self._environ.get("TAVILY_MCP_URL", DEFAULT_TAVILY_URL),
                display_name="Tavily Web Search",
                api_key=tavily_key,
            ))

        return servers

    # ── Providers ─────────────────────────────────────────────────────────

    def get_default_model(self) -> str:
        """Get the default model from configuration."""
        if self.merged.agent.model:
            return self.merged.agent.model

        for provider_name, provider_config in self.merged.providers.items():
            if provider_config.enabled and provider_config.default_model:
                return f"{provider_name}/{provider_config.default_model}"

        return DEFAULT_MODEL

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

        env_var = ENV_API_KEYS.get(provider_name)
        if env_var:
            return self._environ.get(env_var)

        return None

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries, with override taking precedence."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
