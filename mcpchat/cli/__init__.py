"""MCPChat CLI - Command-line interface."""

from mcpchat.cli.main import main

__all__ = ["main"]
