"""Canonical forms for comparing schema definitions.

Two definitions that differ only in spelling (keyword case, whitespace,
implicit defaults, casts PostgreSQL adds, type synonyms) canonicalize to the
same string.  Everything semantically significant (index predicates, sort
order, NULLS ordering, operator classes, storage parameters, string
literals) is preserved.

Index DDL and default expressions are parsed with sqlglot's ``postgres``
dialect.  Casts and redundant parentheses are removed on the syntax tree and
the statement is regenerated, so ``((user_name)::text = 'Active'::text)``
and ``user_name = 'Active'`` compare equal.  Text sqlglot cannot parse
falls back to a whitespace and case normalization of the literal text.

Pure functions -- no I/O, never raise on text input.

Usage:
    from table_delta.schema.canonical import canonicalize_ddl, canonicalize_type

    canonicalize_type("character varying(20)")   # 'varchar(20)'
    canonicalize_ddl(actual_index, table) == canonicalize_ddl(index_definition, table)
"""

import logging
import re
from collections.abc import Callable, Mapping

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from table_delta.schema.models import ActualIndex, HasIdentifier, IndexDefinition

logger = logging.getLogger(__name__)

DIALECT = "postgres"

DEFAULT_TYPE_SYNONYMS: dict[str, str] = {
    "character varying": "varchar",
    "character": "char",
    "bpchar": "char",
    "int": "int4",
    "integer": "int4",
    "smallint": "int2",
    "bigint": "int8",
    "serial": "int4",
    "serial4": "int4",
    "smallserial": "int2",
    "serial2": "int2",
    "bigserial": "int8",
    "serial8": "int8",
    "boolean": "bool",
    "double precision": "float8",
    "float": "float8",
    "real": "float4",
    "decimal": "numeric",
    "timestamp with time zone": "timestamptz",
    "timestamp without time zone": "timestamp",
    "time with time zone": "timetz",
    "time without time zone": "time",
    "bit varying": "varbit",
}

# Declared without a length these mean length 1 (``format_type`` prints it)
_IMPLICIT_LENGTH_ONE = frozenset({"char", "character", "bit"})

_DEFAULT_METHOD = re.compile(r"\s+using\s+btree\b")
_HEADER_NOISE = re.compile(r"\b(?:concurrently|if\s+not\s+exists)\s+", re.IGNORECASE)
_TYPE_MODIFIER = re.compile(r"\(([^)]*)\)")
_QUOTED = re.compile(r"('(?:[^']|'')*')")
_QUOTED_NUMBER = re.compile(r"'-?\d+(?:\.\d+)?'")

# Binding strength of the operators whose parentheses can be dropped safely
_PRECEDENCE: tuple[tuple[type | tuple[type, ...], int], ...] = (
    (exp.Or, 1),
    (exp.And, 2),
    (exp.Not, 3),
    (exp.Predicate, 4),
    ((exp.Add, exp.Sub, exp.DPipe), 5),
    ((exp.Mul, exp.Div, exp.Mod), 6),
    (exp.Neg, 7),
)


def _outside_quotes(text: str, rewrite: Callable[[str], str]) -> str:
    """Apply *rewrite* to everything except single-quoted string literals."""
    pieces = _QUOTED.split(text)
    for i in range(0, len(pieces), 2):
        pieces[i] = rewrite(pieces[i])
    return "".join(pieces).strip()


def _lower_and_collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text.lower())


def _tighten_punctuation(text: str) -> str:
    text = re.sub(r"\s*\(\s*", "(", text)
    text = re.sub(r"\s*\)", ")", text)
    return re.sub(r"\s*,\s*", ", ", text)


def strip_outer_parens(text: str) -> str:
    """Strip every pair of parentheses wrapping the whole text."""
    while True:
        text = text.strip()
        if not (text.startswith("(") and text.endswith(")")):
            return text
        depth = 0
        for i, char in enumerate(text):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth == 0 and i < len(text) - 1:
                    return text
        text = text[1:-1]


# ============================================================================
# Syntax tree simplification
# ============================================================================


def _rank(node: exp.Expression | None) -> int | None:
    for types, rank in _PRECEDENCE:
        if isinstance(node, types):
            return rank
    return None


def _is_operator(node: exp.Expression | None) -> bool:
    return isinstance(node, (exp.Binary, exp.Unary)) and not isinstance(node, exp.Paren)


def _paren_is_redundant(paren: exp.Paren) -> bool:
    """True if dropping *paren* cannot change how the expression groups."""
    inner, parent = paren.this, paren.parent
    if not _is_operator(inner):
        return True
    inner_rank = _rank(inner)
    if inner_rank is None:
        return False
    if not _is_operator(parent):
        return True
    parent_rank = _rank(parent)
    if parent_rank is None:
        return False
    if inner_rank == parent_rank:
        # Left-associative: (a - b) - c is a - b - c
        return parent.args.get("this") is paren and not isinstance(inner, exp.Predicate)
    return inner_rank > parent_rank


def _simplify(tree: exp.Expression) -> exp.Expression:
    """Remove casts, redundant parentheses and identifier quoting."""
    for cast in list(tree.find_all(exp.Cast)):
        cast.replace(cast.this)
    for paren in list(tree.find_all(exp.Paren)):
        if _paren_is_redundant(paren):
            paren.replace(paren.this)
    # The root has no parent to be replaced in
    while isinstance(tree, exp.Cast) or (isinstance(tree, exp.Paren) and _paren_is_redundant(tree)):
        tree = tree.this
    for identifier in tree.find_all(exp.Identifier):
        identifier.set("quoted", False)
    return tree


def _parse(text: str) -> exp.Expression | None:
    try:
        return sqlglot.parse_one(text, read=DIALECT)
    except SqlglotError as e:
        logger.debug("Could not parse %r: %s", text, e)
        return None


def canonicalize_expression(text: str) -> str:
    """Canonical form of a SQL scalar expression or predicate.

    Examples:
        >>> canonicalize_expression("((user_name)::text = 'Active'::text)")
        "user_name = 'Active'"
        >>> canonicalize_expression("(id + 1) * 2") == canonicalize_expression("id + 1 * 2")
        False
    """
    tree = _parse(text)
    if tree is None:
        return _outside_quotes(strip_outer_parens(text), _lower_and_collapse)
    return _outside_quotes(_simplify(tree).sql(dialect=DIALECT), _lower_and_collapse)


# ============================================================================
# Types
# ============================================================================


def merge_synonyms(extra: Mapping[str, str] | None) -> dict[str, str]:
    """Default synonym table plus caller-supplied entries (keys lower-cased)."""
    merged = dict(DEFAULT_TYPE_SYNONYMS)
    for key, value in (extra or {}).items():
        merged[re.sub(r"\s+", " ", key.strip().lower())] = value.strip().lower()
    return merged


def canonicalize_type(
    type_name: str,
    synonyms: Mapping[str, str] | None = None,
) -> str:
    """Canonical spelling of a column type.

    The type modifier and array suffix are kept; only the base name goes
    through the synonym table.  ``char`` and ``bit`` without a length are
    length 1.

    Examples:
        >>> canonicalize_type("character varying(20)")
        'varchar(20)'
        >>> canonicalize_type("VARCHAR")
        'varchar'
        >>> canonicalize_type("timestamp(3) with time zone")
        'timestamptz(3)'
        >>> canonicalize_type("integer[]")
        'int4[]'
        >>> canonicalize_type("char")
        'char(1)'
    """
    table = DEFAULT_TYPE_SYNONYMS if synonyms is None else synonyms
    text = re.sub(r"\s+", " ", type_name.strip().lower())

    array_suffix = ""
    while text.endswith("[]"):
        array_suffix += "[]"
        text = text[:-2].rstrip()

    modifier = ""
    match = _TYPE_MODIFIER.search(text)
    if match:
        modifier = "(" + re.sub(r"\s+", "", match.group(1)) + ")"
        text = (text[: match.start()] + " " + text[match.end():]).strip()
        text = re.sub(r"\s+", " ", text)
    elif text in _IMPLICIT_LENGTH_ONE:
        modifier = "(1)"

    seen: set[str] = set()
    while text in table and text not in seen:
        seen.add(text)
        text = table[text]

    return f"{text}{modifier}{array_suffix}"


def base_type(canonical_type: str) -> str:
    """Canonical type without modifier or array suffix."""
    return _TYPE_MODIFIER.sub("", canonical_type).replace("[]", "").strip()


def type_modifier(canonical_type: str) -> tuple[int, ...] | None:
    """Numeric modifier of a canonical type, e.g. ``(10, 2)`` for numeric(10,2)."""
    match = _TYPE_MODIFIER.search(canonical_type)
    if not match:
        return None
    try:
        return tuple(int(part) for part in match.group(1).split(","))
    except ValueError:
        return None


# ============================================================================
# Defaults
# ============================================================================


def canonicalize_default(expression: str | None) -> str | None:
    """Canonical form of a column default expression.

    Examples:
        >>> canonicalize_default("'foo'::character varying") == canonicalize_default("'foo'")
        True
        >>> canonicalize_default("(NOW())") == canonicalize_default("now()")
        True
        >>> canonicalize_default(None) is None
        True
    """
    if expression is None:
        return None

    text = canonicalize_expression(expression.strip())

    # '-1'::integer prints as a quoted literal
    if _QUOTED_NUMBER.fullmatch(text):
        text = text[1:-1]

    return text


# ============================================================================
# Indexes
# ============================================================================


def _qualify_table(text: str, table: HasIdentifier) -> str:
    identifier = table.identifier
    name = identifier.name.lower()
    qualified = identifier.qualified_name.lower()
    pattern = re.compile(rf"\bon ({re.escape(name)})(?![\w$.])")
    return pattern.sub(f"on {qualified}", text, count=1)


def canonicalize_index_text(text: str, table: HasIdentifier | None = None) -> str:
    """Canonicalize raw CREATE INDEX text."""
    text = text.strip().rstrip(";").strip()
    # CONCURRENTLY and IF NOT EXISTS change how the index is built, not what it is
    text = _HEADER_NOISE.sub("", text)

    tree = _parse(text)
    if isinstance(tree, exp.Create):
        text = _simplify(tree).sql(dialect=DIALECT)
    else:
        text = text.replace('"', "")

    text = _outside_quotes(text, lambda piece: _tighten_punctuation(_lower_and_collapse(piece)))
    text = _DEFAULT_METHOD.sub("", text)

    if table is not None:
        text = _qualify_table(text, table)

    return text


def canonicalize_ddl(
    definition: IndexDefinition | ActualIndex | str,
    table: HasIdentifier | None = None,
) -> str:
    """Comparison key for an index definition.

    Accepts a desired ``IndexDefinition`` (rendered against *table*), an
    introspected ``ActualIndex``, or raw DDL text.

    Example:
        >>> from table_delta.schema.table import Table
        >>> t = Table("deltas.people")
        >>> canonicalize_ddl(
        ...     "CREATE UNIQUE INDEX idx_people_user_name ON deltas.people USING btree (user_name)", t
        ... ) == canonicalize_ddl(
        ...     IndexDefinition(name="idx_people_user_name", columns=["user_name"], is_unique=True), t
        ... )
        True
    """
    if isinstance(definition, IndexDefinition):
        if table is None:
            raise ValueError("An owning table is required to render an IndexDefinition")
        text = definition.to_ddl(table)
    elif isinstance(definition, ActualIndex):
        text = definition.ddl
    else:
        text = str(definition)

    return canonicalize_index_text(text, table)
