"""
MCPChat validation module.

This module provides configuration validation and schema enforcement.
"""

from mcpchat.validation.config import Config, ConfigError, ServerConfig

__all__ = ["Config", "ConfigError", "ServerConfig"]
