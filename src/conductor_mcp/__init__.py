"""Conductor MCP: track/plan state with git-aware revert."""

__version__ = "0.1.0"

__all__ = ["__version__"]
