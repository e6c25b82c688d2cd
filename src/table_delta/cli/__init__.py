"""CLI module for table delta detection and patching.

Provides commands for database profile management, schema diffing, and
applying DDL patches.

Usage:
    DB_PROFILE=local table-delta connect
    table-delta status
    table-delta profiles
    table-delta diff --schema myapp.schema:TABLES
    table-delta patch --schema myapp.schema:TABLES
    table-delta patch --schema myapp.schema:TABLES --confirm

Commands:
    connect   - Test the connection and remember the profile
    status    - Show current connection status
    profiles  - List available profiles
    diff      - Compare desired tables with the live database
    patch     - Show (and with --confirm, apply) the DDL that reconciles them

``--schema`` names a module attribute holding a ``Table``, a list of
tables, or a function returning either.
"""

import argparse
import asyncio
import importlib
import sys
from collections.abc import Mapping
from pathlib import Path

from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table as RichTable

from table_delta.config.loader import load_db_config
from table_delta.errors import TableDeltaError
from table_delta.factory import (
    ProfileNotFoundError,
    connect,
    get_active_profile_name,
    get_adapter,
    get_introspector,
    read_profile_lock,
)
from table_delta.schema.canonical import merge_synonyms
from table_delta.schema.delta import ItemDelta, TableDelta
from table_delta.schema.migrator import apply_patch, find_table_delta
from table_delta.schema.models import SchemaPatchDifference
from table_delta.schema.patch import SchemaPatch, build_patch, build_rebuild_patch
from table_delta.schema.table import Table

console = Console()

_DIFFERENCE_STYLES = {
    SchemaPatchDifference.NONE: "green",
    SchemaPatchDifference.UPDATE: "yellow",
    SchemaPatchDifference.CREATE: "cyan",
    SchemaPatchDifference.INVALID: "bold red",
}


# ============================================================================
# Desired schema loading (CLI-internal helpers)
# ============================================================================


def _load_tables(target: str) -> list[Table]:
    """Load desired tables from a ``module:attribute`` reference.

    The attribute may be a ``Table``, a list/tuple of tables, or a callable
    returning either.  The working directory is importable.

    Raises:
        ValueError: If the reference is malformed or does not yield tables.
        ImportError: If the module cannot be imported.

    Example:
        >>> tables = _load_tables("myapp.schema:TABLES")
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected module:attribute, got '{target}'")

    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    module = importlib.import_module(module_name)
    try:
        value = getattr(module, attribute)
    except AttributeError:
        raise ValueError(f"Module '{module_name}' has no attribute '{attribute}'") from None

    if callable(value) and not isinstance(value, Table):
        value = value()
    if isinstance(value, Table):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(t, Table) for t in value):
        return list(value)

    raise ValueError(f"'{target}' is not a Table or a list of tables")


def _load_synonyms() -> Mapping[str, str] | None:
    """Type synonyms from db.toml ``[comparison.type_synonyms]``."""
    try:
        config = load_db_config()
    except FileNotFoundError:
        return None
    if not config.comparison.type_synonyms:
        return None
    return merge_synonyms(config.comparison.type_synonyms)


def _summarize(item_delta: ItemDelta) -> str:
    parts = []
    if item_delta.missing:
        parts.append(f"[green]+{len(item_delta.missing)}[/green]")
    if item_delta.extras:
        parts.append(f"[red]-{len(item_delta.extras)}[/red]")
    if item_delta.different:
        parts.append(f"[yellow]~{len(item_delta.different)}[/yellow]")
    return " ".join(parts) or "[dim]-[/dim]"


def _delta_table(deltas: list[TableDelta]) -> RichTable:
    table = RichTable(title="Schema Differences", show_header=True, header_style="bold")
    table.add_column("Table", style="dim")
    table.add_column("Difference")
    table.add_column("Columns")
    table.add_column("Primary key")
    table.add_column("Indexes")
    table.add_column("Foreign keys")

    for delta in deltas:
        style = _DIFFERENCE_STYLES[delta.difference]
        if delta.difference == SchemaPatchDifference.CREATE:
            table.add_row(
                delta.table.identifier.qualified_name,
                f"[{style}]NEW TABLE[/{style}]",
                "", "", "", "",
            )
            continue
        primary_key = (
            "[yellow]changed[/yellow]"
            if delta.primary_key_difference != SchemaPatchDifference.NONE
            else "[dim]-[/dim]"
        )
        table.add_row(
            delta.table.identifier.qualified_name,
            f"[{style}]{delta.difference.name}[/{style}]",
            _summarize(delta.columns),
            primary_key,
            _summarize(delta.indexes),
            _summarize(delta.foreign_keys),
        )
    return table


def _resolve_profile(env_prefix: str, command: str) -> str | None:
    try:
        return get_active_profile_name(env_prefix=env_prefix)
    except ProfileNotFoundError:
        console.print("[yellow]No profile configured.[/yellow]")
        console.print(
            f"[dim]Run[/dim] [cyan]DB_PROFILE=<name> table-delta {command} "
            f"--schema module:attr[/cyan]"
        )
        return None


async def _collect_deltas(
    tables: list[Table],
    profile: str,
    env_prefix: str,
) -> list[TableDelta]:
    synonyms = _load_synonyms()
    async with get_introspector(profile_name=profile, env_prefix=env_prefix) as reader:
        return [await find_table_delta(reader, table, synonyms) for table in tables]


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    previous_profile = read_profile_lock()

    console.print("Connecting to database...", style="dim")

    result = await connect(env_prefix=env_prefix)

    if not result.success:
        console.print()
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print()
    console.print(
        f"[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{result.profile_name}[/bold cyan]"
    )

    # Show profile switch notice
    if previous_profile and previous_profile != result.profile_name:
        console.print(
            f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
            f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
        )

    return 0


async def _async_diff(args: argparse.Namespace) -> int:
    """Async implementation for diff command.

    Returns:
        0 if every table matches, 1 if differences were found or on error.
    """
    env_prefix = getattr(args, "env_prefix", "")

    profile = _resolve_profile(env_prefix, "diff")
    if profile is None:
        return 1

    try:
        tables = _load_tables(args.schema)
    except (ImportError, ValueError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1

    console.print(f"Comparing schema for profile: [bold cyan]{profile}[/bold cyan]")

    try:
        deltas = await _collect_deltas(tables, profile, env_prefix)
    except TableDeltaError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] Connection failed: {e}")
        return 1

    console.print()
    console.print(_delta_table(deltas))

    for delta in deltas:
        if delta.has_changes() and args.verbose:
            console.print()
            console.print(delta.format_report())
        elif delta.invalid_changes:
            console.print()
            console.print(f"[bold red]Irreconcilable changes in {delta.table.identifier}:[/bold red]")
            for change in delta.invalid_changes:
                console.print(f"  [red]![/red] {change.describe()}")

    if any(delta.has_changes() for delta in deltas):
        return 1

    console.print()
    console.print("[bold green]v[/bold green] Schema is up to date")
    return 0


async def _async_patch(args: argparse.Namespace) -> int:
    """Async implementation for patch command.

    Prints the DDL for every table with differences and applies it when
    ``--confirm`` is given.  Irreconcilable tables are refused unless
    ``--rebuild-invalid`` opts into dropping and recreating them.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")

    profile = _resolve_profile(env_prefix, "patch")
    if profile is None:
        return 1

    try:
        tables = _load_tables(args.schema)
    except (ImportError, ValueError) as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1

    console.print(f"Analyzing schema for profile: [bold cyan]{profile}[/bold cyan]")

    try:
        deltas = await _collect_deltas(tables, profile, env_prefix)
    except TableDeltaError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] Connection failed: {e}")
        return 1

    patches: list[SchemaPatch] = []
    refused = False
    for delta in deltas:
        if not delta.has_changes():
            continue
        if delta.difference == SchemaPatchDifference.INVALID:
            if not args.rebuild_invalid:
                refused = True
                console.print()
                console.print(
                    f"[bold red]x[/bold red] {delta.table.identifier} cannot be patched incrementally:"
                )
                for change in delta.invalid_changes:
                    console.print(f"  [red]![/red] {change.describe()}")
                continue
            patches.append(build_rebuild_patch(delta.table))
        else:
            patches.append(build_patch(delta))

    if refused:
        console.print()
        console.print(
            "[dim]To drop and recreate irreconcilable tables (destroys their data), add[/dim] "
            "[cyan]--rebuild-invalid[/cyan]"
        )
        return 1

    if not patches:
        console.print()
        console.print("[bold green]v[/bold green] Schema is up to date - nothing to patch")
        return 0

    for patch in patches:
        console.print()
        console.print(Syntax(patch.to_script(), "sql", word_wrap=True))

    if not args.confirm:
        console.print()
        console.print("[dim]To apply the patch, add[/dim] [cyan]--confirm[/cyan] [dim]flag.[/dim]")
        return 0

    console.print()
    console.print("[bold]Applying patch...[/bold]")

    try:
        adapter = await get_adapter(profile_name=profile, env_prefix=env_prefix)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] Connection failed: {e}")
        return 1

    try:
        for patch in patches:
            result = await apply_patch(adapter, patch)
            if not result.success:
                console.print(f"\n[bold red]x[/bold red] Patch for {patch.table} failed: {result.error}")
                if result.failed_statement:
                    console.print(f"  [dim]Statement:[/dim] {result.failed_statement}")
                return 1
            console.print(
                f"  [green]v[/green] {patch.table}: {result.statements_executed} statement(s)"
            )
    finally:
        await adapter.close()

    console.print()
    console.print("[bold green]v Schema patch complete![/bold green]")
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Test the connection and remember the profile.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files (lock file and TOML config) -- no database calls.

    Returns:
        0 always (informational command).
    """
    profile = read_profile_lock()

    if profile:
        table = RichTable(title="Connection Status", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
        table.add_row("Profile source", ".db-profile")

        try:
            config = load_db_config()
            if profile in config.profiles:
                p = config.profiles[profile]
                if p.description:
                    table.add_row("Description", p.description)
            if config.comparison.type_synonyms:
                table.add_row("Type synonyms", str(len(config.comparison.type_synonyms)))
        except FileNotFoundError:
            table.add_row("Warning", "[yellow]db.toml not found[/yellow]")

        console.print(table)
    else:
        console.print("[yellow]No connected profile.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]DB_PROFILE=<name> table-delta connect[/cyan]")

    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = RichTable(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    """Compare desired tables with the live database.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_diff(args))


def cmd_patch(args: argparse.Namespace) -> int:
    """Show or apply the DDL patch.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_patch(args))


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="table-delta",
        description="Detect and patch differences between desired and live table schemas",
    )

    # Global option: --env-prefix
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # connect command
    p_connect = subparsers.add_parser(
        "connect",
        help="Test the connection and remember the profile",
    )
    p_connect.set_defaults(func=cmd_connect)

    # status command
    p_status = subparsers.add_parser(
        "status",
        help="Show current connection status",
    )
    p_status.set_defaults(func=cmd_status)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # diff command
    p_diff = subparsers.add_parser(
        "diff",
        help="Compare desired tables with the live database (exit 1 on differences)",
    )
    p_diff.add_argument(
        "--schema",
        required=True,
        help="Desired tables as module:attribute (e.g., myapp.schema:TABLES)",
    )
    p_diff.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print a per-table report of every difference",
    )
    p_diff.set_defaults(func=cmd_diff)

    # patch command
    p_patch = subparsers.add_parser(
        "patch",
        help="Show the DDL that reconciles the live database",
    )
    p_patch.add_argument(
        "--schema",
        required=True,
        help="Desired tables as module:attribute (e.g., myapp.schema:TABLES)",
    )
    p_patch.add_argument(
        "--confirm",
        action="store_true",
        help="Apply the patch",
    )
    p_patch.add_argument(
        "--rebuild-invalid",
        action="store_true",
        help="Drop and recreate tables that cannot be patched incrementally (destroys data)",
    )
    p_patch.set_defaults(func=cmd_patch)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
