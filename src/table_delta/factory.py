"""Profile resolution and client factory.

Profiles live in ``db.toml``; the active profile comes from the
``{prefix}DB_PROFILE`` environment variable or the ``.db-profile`` lock
file written by a successful ``connect()``.

Usage:
    from table_delta.factory import get_adapter, get_introspector

    adapter = await get_adapter()                      # active profile
    adapter = await get_adapter(profile_name="local")  # explicit profile
    async with get_introspector() as reader:
        actual = await reader.fetch_existing(people.identifier)
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from pydantic import BaseModel

from table_delta.adapters.postgres import AsyncPostgresAdapter
from table_delta.config.loader import load_db_config
from table_delta.config.models import DatabaseProfile
from table_delta.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful connection test.

    Args:
        profile_name: Name of the verified profile
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``{env_prefix}DB_PROFILE`` env var (for initial connect or CI/CD)
    2. .db-profile file (profile from previous connect)
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the env var name, e.g. ``"MYAPP_"``

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_var}=<name> table-delta connect\n"
        "Profiles are defined in db.toml (see: table-delta profiles)"
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Returns:
        Tuple of (profile_name, DatabaseProfile)

    Raises:
        ProfileNotFoundError: If no profile configured
        KeyError: If profile not found in db.toml
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    config = load_db_config()

    if profile_name not in config.profiles:
        raise KeyError(
            f"Profile '{profile_name}' not found in db.toml.\n"
            f"Available profiles: {', '.join(config.profiles.keys())}"
        )

    return profile_name, config.profiles[profile_name]


# ============================================================================
# Connection
# ============================================================================


class ConnectionResult(BaseModel):
    """Result of connect()."""

    success: bool
    profile_name: str | None = None
    error: str | None = None


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def _resolve_database_url(
    profile_name: str | None,
    env_prefix: str,
    database_url: str | None,
) -> str:
    if database_url is not None:
        return database_url
    _, profile = get_active_profile(profile_name, env_prefix)
    return resolve_url(profile)


async def connect(profile_name: str | None = None, env_prefix: str = "") -> ConnectionResult:
    """Test a profile's connection and remember it as the active profile.

    Args:
        profile_name: Profile name from db.toml.  If None, uses the
            ``{env_prefix}DB_PROFILE`` env var or the existing lock file.
        env_prefix: Prefix for the profile env var.

    Returns:
        ConnectionResult with success status

    Example:
        >>> result = await connect("local")
        >>> if not result.success:
        ...     print(f"Failed: {result.error}")
    """
    # Resolve profile name
    if profile_name is None:
        try:
            profile_name = get_active_profile_name(env_prefix)
        except ProfileNotFoundError as e:
            return ConnectionResult(success=False, error=str(e))

    # Load profile config
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        return ConnectionResult(success=False, error=str(e))

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys())
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Profile '{profile_name}' not found. Available: {available}",
        )

    url = resolve_url(config.profiles[profile_name])

    try:
        async with SchemaIntrospector(url) as introspector:
            await introspector.test_connection()
    except Exception as e:
        logger.debug("Connection test for profile %s failed: %s", profile_name, e)
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )

    write_profile_lock(profile_name)
    logger.info("Connected to profile %s", profile_name)
    return ConnectionResult(success=True, profile_name=profile_name)


# ============================================================================
# Factories
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
) -> AsyncPostgresAdapter:
    """Create a DDL executor.

    A new adapter is created on every call; the caller owns it and must
    ``await adapter.close()``.

    Args:
        profile_name: Profile from db.toml (default: active profile).
        env_prefix: Prefix for the profile env var.
        database_url: Direct connection URL.  Takes precedence over
            profiles.

    Raises:
        ProfileNotFoundError: If no profile is configured.
        KeyError: If the profile is not in db.toml.
    """
    url = _resolve_database_url(profile_name, env_prefix, database_url)
    return AsyncPostgresAdapter(database_url=url)


def get_introspector(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
) -> SchemaIntrospector:
    """Create a schema reader; use it with ``async with``.

    Resolution is the same as ``get_adapter()``.
    """
    url = _resolve_database_url(profile_name, env_prefix, database_url)
    return SchemaIntrospector(url)
