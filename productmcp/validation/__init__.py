"""
productmcp validation module.

This module provides configuration loading and schema enforcement.
"""

from productmcp.validation.config import Config, ConfigError

__all__ = ["Config", "ConfigError"]
