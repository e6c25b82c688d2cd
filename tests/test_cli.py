"""Tests for the table-delta CLI.

Database access is patched out: deltas are computed from in-memory
ActualTable snapshots and the adapter is an AsyncMock.
"""

import argparse
import inspect
import sys
import textwrap
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from table_delta.cli import (
    _load_tables,
    cmd_connect,
    cmd_diff,
    cmd_patch,
    cmd_profiles,
    cmd_status,
    main,
)
from table_delta.factory import ConnectionResult
from table_delta.schema.delta import find_delta
from table_delta.schema.models import ActualColumn, ActualPrimaryKey, ActualTable, DbObjectName
from table_delta.schema.table import Table


def _people() -> Table:
    table = Table("deltas.people")
    table.add_column("id", int).as_primary_key()
    table.add_column("user_name", str)
    return table


def _actual(*extra: ActualColumn) -> ActualTable:
    return ActualTable(
        identifier=DbObjectName.parse("deltas.people"),
        columns=[
            ActualColumn(name="id", type="integer", allow_nulls=False),
            ActualColumn(name="user_name", type="character varying"),
            *extra,
        ],
        primary_key=ActualPrimaryKey(name="pkey_people_id", column_names=["id"]),
    )


def _args(**values) -> argparse.Namespace:
    defaults = dict(env_prefix="", schema="app.schema:TABLES", verbose=False, confirm=False, rebuild_invalid=False)
    defaults.update(values)
    return argparse.Namespace(**defaults)


@pytest.fixture
def schema_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    """Write an importable schema module into a temporary working directory."""
    module_name = f"desired_schema_{tmp_path.name}"
    (tmp_path / f"{module_name}.py").write_text(textwrap.dedent("""\
        from table_delta.schema.table import Table

        people = Table("deltas.people")
        people.add_column("id", int).as_primary_key()

        states = Table("deltas.states")
        states.add_column("id", int).as_primary_key()

        TABLES = [people, states]
        NOT_TABLES = [1, 2]

        def build():
            return people
    """))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "path", list(sys.path))
    yield module_name
    sys.modules.pop(module_name, None)


# ------------------------------------------------------------------
# Desired schema loading
# ------------------------------------------------------------------


class TestLoadTables:
    """Verify module:attribute references resolve to tables."""

    def test_list_of_tables(self, schema_module: str) -> None:
        tables = _load_tables(f"{schema_module}:TABLES")
        assert [t.identifier.name for t in tables] == ["people", "states"]

    def test_single_table(self, schema_module: str) -> None:
        tables = _load_tables(f"{schema_module}:people")
        assert len(tables) == 1

    def test_callable(self, schema_module: str) -> None:
        tables = _load_tables(f"{schema_module}:build")
        assert tables[0].identifier.qualified_name == "deltas.people"

    def test_not_tables(self, schema_module: str) -> None:
        with pytest.raises(ValueError, match="not a Table"):
            _load_tables(f"{schema_module}:NOT_TABLES")

    def test_missing_attribute(self, schema_module: str) -> None:
        with pytest.raises(ValueError, match="has no attribute"):
            _load_tables(f"{schema_module}:MISSING")

    def test_malformed_reference(self) -> None:
        with pytest.raises(ValueError, match="module:attribute"):
            _load_tables("no_colon_here")


# ------------------------------------------------------------------
# Async wrapping and argument parsing
# ------------------------------------------------------------------


class TestAsyncWrapping:
    """Verify cmd_* functions wrap async via asyncio.run()."""

    @pytest.mark.parametrize("command", [cmd_connect, cmd_diff, cmd_patch])
    def test_database_commands_use_asyncio_run(self, command) -> None:
        assert "asyncio.run" in inspect.getsource(command)

    @pytest.mark.parametrize("command", [cmd_status, cmd_profiles])
    def test_local_commands_are_sync(self, command) -> None:
        assert "asyncio.run" not in inspect.getsource(command)


class TestCLIArguments:
    """Verify argument parsing and dispatch."""

    def test_env_prefix_is_global(self) -> None:
        with patch("sys.argv", ["table-delta", "--env-prefix", "APP_", "status"]):
            with patch("table_delta.cli.cmd_status", return_value=0) as mock_status:
                assert main() == 0
        assert mock_status.call_args[0][0].env_prefix == "APP_"

    def test_diff_requires_schema(self) -> None:
        with patch("sys.argv", ["table-delta", "diff"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 2

    def test_patch_flags(self) -> None:
        argv = ["table-delta", "patch", "--schema", "app:TABLES", "--confirm", "--rebuild-invalid"]
        with patch("sys.argv", argv):
            with patch("table_delta.cli.cmd_patch", return_value=0) as mock_patch:
                main()
        args = mock_patch.call_args[0][0]
        assert args.schema == "app:TABLES"
        assert args.confirm is True
        assert args.rebuild_invalid is True

    def test_diff_verbose_short_flag(self) -> None:
        with patch("sys.argv", ["table-delta", "diff", "--schema", "app:TABLES", "-v"]):
            with patch("table_delta.cli.cmd_diff", return_value=0) as mock_diff:
                main()
        assert mock_diff.call_args[0][0].verbose is True


# ------------------------------------------------------------------
# Local commands
# ------------------------------------------------------------------


class TestLocalCommands:
    """Verify status and profiles read only local files."""

    def test_profiles_lists_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        (tmp_path / "db.toml").write_text(textwrap.dedent("""\
            [profiles.local]
            url = "postgresql://localhost/db"
            description = "Local database"
        """))
        monkeypatch.chdir(tmp_path)

        with patch("table_delta.factory._PROFILE_LOCK_FILE", tmp_path / ".db-profile"):
            assert cmd_profiles(_args()) == 0

        output = capsys.readouterr().out
        assert "local" in output
        assert "Local database" in output

    def test_profiles_without_config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert cmd_profiles(_args()) == 1

    def test_status_without_profile(self, tmp_path: Path, capsys) -> None:
        with patch("table_delta.factory._PROFILE_LOCK_FILE", tmp_path / ".db-profile"):
            assert cmd_status(_args()) == 0
        assert "No connected profile" in capsys.readouterr().out


# ------------------------------------------------------------------
# Database commands
# ------------------------------------------------------------------


class TestConnectCommand:
    def test_success(self) -> None:
        result = ConnectionResult(success=True, profile_name="local")
        with patch("table_delta.cli.connect", AsyncMock(return_value=result)), \
             patch("table_delta.cli.read_profile_lock", return_value=None):
            assert cmd_connect(_args()) == 0

    def test_failure(self) -> None:
        result = ConnectionResult(success=False, error="Failed to connect to database: refused")
        with patch("table_delta.cli.connect", AsyncMock(return_value=result)), \
             patch("table_delta.cli.read_profile_lock", return_value=None):
            assert cmd_connect(_args()) == 1


class TestDiffCommand:
    """Verify the diff exit status reflects the comparison."""

    def _run(self, actual: ActualTable, **arg_values) -> int:
        table = _people()
        deltas = [find_delta(table, actual)]
        with patch("table_delta.cli.get_active_profile_name", return_value="local"), \
             patch("table_delta.cli._load_tables", return_value=[table]), \
             patch("table_delta.cli._collect_deltas", AsyncMock(return_value=deltas)):
            return cmd_diff(_args(**arg_values))

    def test_up_to_date(self, capsys) -> None:
        assert self._run(_actual()) == 0
        assert "Schema is up to date" in capsys.readouterr().out

    def test_differences_exit_nonzero(self) -> None:
        assert self._run(_actual(ActualColumn(name="age", type="integer"))) == 1

    def test_verbose_prints_report(self, capsys) -> None:
        self._run(_actual(ActualColumn(name="age", type="integer")), verbose=True)
        assert "- age" in capsys.readouterr().out

    def test_bad_schema_reference(self) -> None:
        with patch("table_delta.cli.get_active_profile_name", return_value="local"):
            assert cmd_diff(_args(schema="nope")) == 1


class TestPatchCommand:
    """Verify the patch command previews, applies and refuses as expected."""

    def _run(self, table: Table, actual: ActualTable, adapter: AsyncMock, **arg_values) -> int:
        deltas = [find_delta(table, actual)]
        with patch("table_delta.cli.get_active_profile_name", return_value="local"), \
             patch("table_delta.cli._load_tables", return_value=[table]), \
             patch("table_delta.cli._collect_deltas", AsyncMock(return_value=deltas)), \
             patch("table_delta.cli.get_adapter", AsyncMock(return_value=adapter)):
            return cmd_patch(_args(**arg_values))

    def test_preview_does_not_apply(self, capsys) -> None:
        adapter = AsyncMock()
        assert self._run(_people(), _actual(ActualColumn(name="age", type="integer")), adapter) == 0

        assert "DROP COLUMN IF EXISTS age" in capsys.readouterr().out
        adapter.execute_batch.assert_not_called()

    def test_confirm_applies_and_closes(self) -> None:
        adapter = AsyncMock()
        code = self._run(_people(), _actual(ActualColumn(name="age", type="integer")), adapter, confirm=True)

        assert code == 0
        adapter.execute_batch.assert_awaited_once_with(
            ["ALTER TABLE deltas.people DROP COLUMN IF EXISTS age;"]
        )
        adapter.close.assert_awaited_once()

    def test_invalid_table_is_refused(self) -> None:
        table = _people()
        table.remove_column("user_name")
        table.add_column("user_name", int)
        adapter = AsyncMock()

        assert self._run(table, _actual(), adapter, confirm=True) == 1
        adapter.execute_batch.assert_not_called()

    def test_rebuild_invalid_drops_and_recreates(self) -> None:
        table = _people()
        table.remove_column("user_name")
        table.add_column("user_name", int)
        adapter = AsyncMock()

        assert self._run(table, _actual(), adapter, confirm=True, rebuild_invalid=True) == 0
        statements = adapter.execute_batch.await_args[0][0]
        assert statements[0] == "DROP TABLE IF EXISTS deltas.people CASCADE;"

    def test_failed_statement_exits_nonzero(self) -> None:
        from table_delta.errors import DdlExecutionError

        adapter = AsyncMock()
        adapter.execute_batch.side_effect = DdlExecutionError(
            "ALTER TABLE deltas.people DROP COLUMN IF EXISTS age;", Exception("locked")
        )
        code = self._run(_people(), _actual(ActualColumn(name="age", type="integer")), adapter, confirm=True)

        assert code == 1
        adapter.close.assert_awaited_once()
