"""Tests for DDL, type and default canonicalization.

The actual-side strings are the forms PostgreSQL reports through
``pg_get_indexdef()``, ``format_type()`` and ``pg_get_expr()``.
"""

import pytest

from table_delta.schema.canonical import (
    canonicalize_ddl,
    canonicalize_expression,
    canonicalize_default,
    canonicalize_type,
    merge_synonyms,
    strip_outer_parens,
)
from table_delta.schema.models import ActualIndex, IndexDefinition, IndexMethod, SortOrder
from table_delta.schema.table import Table


def _people() -> Table:
    table = Table("deltas.people")
    table.add_column("id", int).as_primary_key()
    table.add_column("user_name", str)
    table.add_column("data", "jsonb")
    table.add_column("data2", "tsvector")
    return table


# (desired index, pg_get_indexdef output)
MATCHING_INDEXES = [
    pytest.param(
        IndexDefinition(columns=["user_name"]),
        "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name)",
        id="simple btree",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], expression="(lower(?))"),
        "CREATE INDEX idx_people_user_name ON deltas.people USING btree (lower((user_name)::text))",
        id="btree with expression",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], expression="(lower(?))", predicate="id > 5"),
        "CREATE INDEX idx_people_user_name ON deltas.people USING btree "
        "(lower((user_name)::text)) WHERE (id > 5)",
        id="btree with expression and predicate",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], sort_order=SortOrder.desc),
        "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name DESC)",
        id="btree desc",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], is_unique=True),
        "CREATE UNIQUE INDEX idx_people_user_name ON deltas.people USING btree (user_name)",
        id="btree unique",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], is_concurrent=True),
        "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name)",
        id="btree concurrent",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], is_unique=True, is_concurrent=True),
        "CREATE UNIQUE INDEX idx_people_user_name ON deltas.people USING btree (user_name)",
        id="btree concurrent unique",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], method=IndexMethod.brin),
        "CREATE INDEX idx_people_user_name ON deltas.people USING brin (user_name)",
        id="brin",
    ),
    pytest.param(
        IndexDefinition(columns=["data"], method=IndexMethod.gin),
        "CREATE INDEX idx_people_data ON deltas.people USING gin (data)",
        id="gin",
    ),
    pytest.param(
        IndexDefinition(columns=["data2"], method=IndexMethod.gist),
        "CREATE INDEX idx_people_data2 ON deltas.people USING gist (data2)",
        id="gist",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], method=IndexMethod.hash),
        "CREATE INDEX idx_people_user_name ON deltas.people USING hash (user_name)",
        id="hash",
    ),
    pytest.param(
        IndexDefinition(columns=["data"]).to_gin_with_jsonb_path_ops(),
        "CREATE INDEX idx_people_data ON deltas.people USING gin (data jsonb_path_ops)",
        id="gin jsonb_path_ops",
    ),
    pytest.param(
        IndexDefinition(columns=["user_name"], storage_parameters={"fillfactor": "70"}),
        "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name) "
        "WITH (fillfactor='70')",
        id="storage parameters",
    ),
]


class TestCanonicalizeDdl:
    """Verify desired and introspected index DDL compare equal when equivalent."""

    @pytest.mark.parametrize("definition, actual_ddl", MATCHING_INDEXES)
    def test_desired_matches_introspected(self, definition: IndexDefinition, actual_ddl: str) -> None:
        table = _people()
        actual = ActualIndex(name=definition.name_for(table), ddl=actual_ddl)
        assert canonicalize_ddl(actual, table) == canonicalize_ddl(definition, table)

    def test_unqualified_table_is_qualified(self) -> None:
        table = Table("people")
        table.add_column("user_name", str)
        definition = IndexDefinition(columns=["user_name"])
        actual = "CREATE INDEX idx_people_user_name ON people USING btree (user_name)"
        assert canonicalize_ddl(actual, table) == canonicalize_ddl(definition, table)

    def test_quoted_identifiers_and_whitespace(self) -> None:
        table = _people()
        messy = 'create   index "idx_people_user_name" on deltas."people" using BTREE ( "user_name" );'
        clean = "CREATE INDEX idx_people_user_name ON deltas.people (user_name)"
        assert canonicalize_ddl(messy, table) == canonicalize_ddl(clean, table)

    def test_uniqueness_is_significant(self) -> None:
        table = _people()
        unique = IndexDefinition(columns=["user_name"], is_unique=True)
        plain = IndexDefinition(columns=["user_name"])
        assert canonicalize_ddl(unique, table) != canonicalize_ddl(plain, table)

    def test_method_is_significant(self) -> None:
        table = _people()
        actual = "CREATE INDEX idx_people_user_name ON deltas.people USING hash (user_name)"
        assert canonicalize_ddl(actual, table) != canonicalize_ddl(IndexDefinition(columns=["user_name"]), table)

    def test_predicate_is_significant(self) -> None:
        table = _people()
        with_predicate = IndexDefinition(columns=["user_name"], predicate="id > 5")
        other_predicate = IndexDefinition(columns=["user_name"], predicate="id > 6")
        assert canonicalize_ddl(with_predicate, table) != canonicalize_ddl(other_predicate, table)

    def test_sort_order_is_significant(self) -> None:
        table = _people()
        desc = IndexDefinition(columns=["user_name"], sort_order=SortOrder.desc)
        assert canonicalize_ddl(desc, table) != canonicalize_ddl(IndexDefinition(columns=["user_name"]), table)

    def test_operator_class_is_significant(self) -> None:
        table = _people()
        actual = "CREATE INDEX idx_people_data ON deltas.people USING gin (data)"
        desired = IndexDefinition(columns=["data"]).to_gin_with_jsonb_path_ops()
        assert canonicalize_ddl(actual, table) != canonicalize_ddl(desired, table)

    def test_string_literals_keep_case(self) -> None:
        table = _people()
        result = canonicalize_ddl(
            "CREATE INDEX idx_x ON deltas.people (user_name) WHERE (user_name <> 'Admin')", table
        )
        assert "'Admin'" in result

    def test_idempotent(self) -> None:
        table = _people()
        once = canonicalize_ddl(MATCHING_INDEXES[2].values[1], table)
        assert canonicalize_ddl(once, table) == once

    def test_index_definition_requires_table(self) -> None:
        with pytest.raises(ValueError):
            canonicalize_ddl(IndexDefinition(columns=["user_name"]))

    def test_unknown_text_never_raises(self) -> None:
        assert canonicalize_ddl("  Not An Index  ") == "not an index"

    def test_predicate_with_casts_matches_plain_predicate(self) -> None:
        table = _people()
        definition = IndexDefinition(columns=["user_name"], predicate="user_name = 'Active'")
        actual = (
            "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name) "
            "WHERE ((user_name)::text = 'Active'::text)"
        )
        assert canonicalize_ddl(actual, table) == canonicalize_ddl(definition, table)

    def test_boolean_predicate_with_casts(self) -> None:
        table = _people()
        definition = IndexDefinition(columns=["user_name"], predicate="user_name = 'a' or id > 5")
        actual = (
            "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name) "
            "WHERE (((user_name)::text = 'a'::text) OR (id > 5))"
        )
        assert canonicalize_ddl(actual, table) == canonicalize_ddl(definition, table)

    def test_predicate_grouping_is_significant(self) -> None:
        table = _people()
        grouped = IndexDefinition(columns=["user_name"], predicate="(id + 1) * 2 > 5")
        ungrouped = IndexDefinition(columns=["user_name"], predicate="id + 1 * 2 > 5")
        actual = (
            "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name) "
            "WHERE (((id + 1) * 2) > 5)"
        )
        assert canonicalize_ddl(grouped, table) != canonicalize_ddl(ungrouped, table)
        assert canonicalize_ddl(actual, table) == canonicalize_ddl(grouped, table)

    def test_concurrently_and_if_not_exists_ignored(self) -> None:
        table = _people()
        noisy = "CREATE INDEX CONCURRENTLY IF NOT EXISTS idx_people_user_name ON deltas.people (user_name)"
        plain = "CREATE INDEX idx_people_user_name ON deltas.people USING btree (user_name)"
        assert canonicalize_ddl(noisy, table) == canonicalize_ddl(plain, table)


class TestCanonicalizeType:
    """Verify type synonym canonicalization."""

    @pytest.mark.parametrize(
        "declared, reported",
        [
            ("varchar", "character varying"),
            ("varchar(20)", "character varying(20)"),
            ("int", "integer"),
            ("integer", "int4"),
            ("bigint", "int8"),
            ("serial", "integer"),
            ("boolean", "bool"),
            ("double precision", "float8"),
            ("timestamptz", "timestamp with time zone"),
            ("timestamp(3) with time zone", "timestamptz(3)"),
            ("numeric(10, 2)", "numeric(10,2)"),
            ("integer[]", "int4[]"),
            ("JSONB", "jsonb"),
        ],
    )
    def test_equivalent_spellings(self, declared: str, reported: str) -> None:
        assert canonicalize_type(declared) == canonicalize_type(reported)

    def test_modifier_is_significant(self) -> None:
        assert canonicalize_type("varchar(20)") != canonicalize_type("varchar(30)")

    def test_array_is_significant(self) -> None:
        assert canonicalize_type("integer") != canonicalize_type("integer[]")

    @pytest.mark.parametrize(
        "declared, reported",
        [
            ("char", "character(1)"),
            ("character", "bpchar(1)"),
            ("bit", "bit(1)"),
        ],
    )
    def test_unsized_char_and_bit_have_length_one(self, declared: str, reported: str) -> None:
        assert canonicalize_type(declared) == canonicalize_type(reported)

    def test_char_length_is_significant(self) -> None:
        assert canonicalize_type("char") != canonicalize_type("character(5)")
        assert canonicalize_type("bit varying") != canonicalize_type("bit(1)")

    def test_custom_synonyms(self) -> None:
        synonyms = merge_synonyms({"CITEXT": "text"})
        assert canonicalize_type("citext", synonyms) == canonicalize_type("text", synonyms)
        # Built-in synonyms survive the merge
        assert canonicalize_type("character varying", synonyms) == "varchar"


class TestCanonicalizeDefault:
    """Verify default expression canonicalization."""

    def test_trailing_cast_removed(self) -> None:
        assert canonicalize_default("'foo'::character varying") == canonicalize_default("'foo'")

    def test_quoted_number_literal(self) -> None:
        assert canonicalize_default("'-1'::integer") == canonicalize_default("-1")

    def test_negative_number_forms(self) -> None:
        assert canonicalize_default("(-1)") == canonicalize_default("-1")

    def test_outer_parens_and_case(self) -> None:
        assert canonicalize_default("(NOW())") == canonicalize_default("now()")

    def test_literal_case_preserved(self) -> None:
        assert canonicalize_default("'Foo'") != canonicalize_default("'foo'")

    def test_none(self) -> None:
        assert canonicalize_default(None) is None


class TestStripOuterParens:
    """Verify only fully wrapping parentheses are stripped."""

    def test_strips_nested_wrapping(self) -> None:
        assert strip_outer_parens("((id > 5))") == "id > 5"

    def test_keeps_separate_groups(self) -> None:
        assert strip_outer_parens("(a) AND (b)") == "(a) AND (b)"


class TestCanonicalizeExpression:
    """Verify casts and redundant grouping are dropped from expressions."""

    @pytest.mark.parametrize(
        "reported, declared",
        [
            ("((user_name)::text = 'Active'::text)", "user_name = 'Active'"),
            ("(((first_name)::text || ' '::text) || (last_name)::text)", "first_name || ' ' || last_name"),
            ("((id > 5) AND (id < 10))", "id > 5 and id < 10"),
            ("(NOT (id > 5))", "not id > 5"),
            ('("User_Name" IS NOT NULL)', "user_name is not null"),
        ],
    )
    def test_reported_matches_declared(self, reported: str, declared: str) -> None:
        assert canonicalize_expression(reported) == canonicalize_expression(declared)

    def test_grouping_that_changes_meaning_is_kept(self) -> None:
        assert canonicalize_expression("(id + 1) * 2") != canonicalize_expression("id + 1 * 2")
        assert canonicalize_expression("(a OR b) AND c") != canonicalize_expression("a OR b AND c")

    def test_literal_case_preserved(self) -> None:
        assert "'Active'" in canonicalize_expression("user_name = 'Active'::text")

    def test_unparsable_text_is_normalized(self) -> None:
        assert canonicalize_expression("((  Foo ))) BAR") == canonicalize_expression("((foo ))) bar")
