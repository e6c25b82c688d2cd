"""Pydantic models for database configuration."""

from pydantic import BaseModel, Field


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class ComparisonSettings(BaseModel):
    """How desired and actual schemas are compared.

    ``type_synonyms`` extends the built-in synonym table, e.g.
    ``{"citext": "text"}``.
    """

    type_synonyms: dict[str, str] = Field(default_factory=dict)


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    comparison: ComparisonSettings = Field(default_factory=ComparisonSettings)
