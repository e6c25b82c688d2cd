"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from table_delta.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from table_delta.config.loader import load_db_config
from table_delta.config.models import ComparisonSettings, DatabaseConfig, DatabaseProfile

__all__ = ["load_db_config", "ComparisonSettings", "DatabaseConfig", "DatabaseProfile"]
