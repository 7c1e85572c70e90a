"""
mcplex validation module.

This module provides configuration validation and schema enforcement.
"""

from mcplex.validation.config import Config, ConfigError

__all__ = ["Config", "ConfigError"]
