"""
Best-effort reversal SQL for raw SQL migrations.

This is a keyword scanner, not a SQL parser. It recognises a small set of
additive DDL statements and emits the matching ``DROP ... IF EXISTS``:

    CREATE TABLE t                  -> DROP TABLE IF EXISTS t;
    ALTER TABLE t ADD COLUMN c      -> ALTER TABLE t DROP COLUMN IF EXISTS c;
    ALTER TABLE t ADD CONSTRAINT k  -> ALTER TABLE t DROP CONSTRAINT IF EXISTS k;
    CREATE [UNIQUE] INDEX i         -> DROP INDEX IF EXISTS i;
    CREATE [OR REPLACE] VIEW v      -> DROP VIEW IF EXISTS v;
    CREATE [OR REPLACE] FUNCTION f  -> DROP FUNCTION IF EXISTS f;
    CREATE TRIGGER g ... ON t       -> DROP TRIGGER IF EXISTS g ON t;
    CREATE SEQUENCE s               -> DROP SEQUENCE IF EXISTS s;
    CREATE TYPE y                   -> DROP TYPE IF EXISTS y;

Reversal statements are emitted in reverse source order, so objects are
dropped after the objects that depend on them.

A ``DROP TABLE`` anywhere in the forward script makes the reversal
undecidable: the dropped table's shape cannot be recovered from text, so
no SQL is returned at all. Statements the scanner does not recognise are
listed in ``skipped`` and mark the plan as partial. Callers must treat the
output as a suggestion, never as a guaranteed inverse.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Callable, Pattern

from ..connections.statements import split_statements, summarize_statement

_IDENT = r'("[^"]+"|`[^`]+`|[\w$]+(?:\.[\w$]+)?)'

_DROP_TABLE = re.compile(r"\bDROP\s+TABLE\b", re.IGNORECASE)

_CREATE_TABLE = re.compile(
    r"^\s*CREATE\s+(?:(?:GLOBAL\s+|LOCAL\s+)?(?:TEMP|TEMPORARY|UNLOGGED)\s+)?TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _IDENT,
    re.IGNORECASE
)
_ALTER_TABLE = re.compile(r"^\s*ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?" + _IDENT, re.IGNORECASE)
_ADD_COLUMN = re.compile(r"\bADD\s+COLUMN\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _IDENT, re.IGNORECASE)
_ADD_CONSTRAINT = re.compile(r"\bADD\s+CONSTRAINT\s+" + _IDENT, re.IGNORECASE)
_CREATE_INDEX = re.compile(
    r"^\s*CREATE\s+(?:UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?(?!ON\b)" + _IDENT,
    re.IGNORECASE
)
_CREATE_VIEW = re.compile(r"^\s*CREATE\s+(?:OR\s+REPLACE\s+)?(?:MATERIALIZED\s+)?VIEW\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _IDENT, re.IGNORECASE)
_CREATE_FUNCTION = re.compile(r"^\s*CREATE\s+(?:OR\s+REPLACE\s+)?FUNCTION\s+" + _IDENT, re.IGNORECASE)
_CREATE_TRIGGER = re.compile(
    r"^\s*CREATE\s+(?:OR\s+REPLACE\s+)?TRIGGER\s+" + _IDENT + r"\s+.*?\bON\s+" + _IDENT,
    re.IGNORECASE | re.DOTALL
)
_CREATE_SEQUENCE = re.compile(r"^\s*CREATE\s+SEQUENCE\s+(?:IF\s+NOT\s+EXISTS\s+)?" + _IDENT, re.IGNORECASE)
_CREATE_TYPE = re.compile(r"^\s*CREATE\s+TYPE\s+" + _IDENT, re.IGNORECASE)


class ReversalConfidence(str, Enum):
    """How much of the forward script the reversal covers."""
    NONE = "none"
    PARTIAL = "partial"
    FULL = "full"


@dataclass
class ReversalPlan:
    """Derived reversal SQL and how trustworthy it is."""
    statements: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    decidable: bool = True
    reason: Optional[str] = None

    @property
    def sql(self) -> Optional[str]:
        """Reversal script, or None when nothing can be derived."""
        if not self.decidable or not self.statements:
            return None
        return "\n".join(self.statements)

    @property
    def partial(self) -> bool:
        return bool(self.skipped)

    @property
    def confidence(self) -> ReversalConfidence:
        if self.sql is None:
            return ReversalConfidence.NONE
        if self.partial:
            return ReversalConfidence.PARTIAL
        return ReversalConfidence.FULL


def _reverse_create_table(statement: str) -> Optional[List[str]]:
    match = _CREATE_TABLE.match(statement)
    if not match:
        return None
    return [f"DROP TABLE IF EXISTS {match.group(1)};"]


def _reverse_alter_table(statement: str) -> Optional[List[str]]:
    match = _ALTER_TABLE.match(statement)
    if not match:
        return None
    table = match.group(1)
    rest = statement[match.end():]

    reversed_clauses = []
    for clause in _ADD_COLUMN.finditer(rest):
        reversed_clauses.append(f"ALTER TABLE {table} DROP COLUMN IF EXISTS {clause.group(1)};")
    for clause in _ADD_CONSTRAINT.finditer(rest):
        reversed_clauses.append(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {clause.group(1)};")

    if not reversed_clauses:
        return None
    # undo later clauses first
    reversed_clauses.reverse()
    return reversed_clauses


def _simple_drop(pattern: Pattern, object_type: str) -> Callable[[str], Optional[List[str]]]:
    def reverse(statement: str) -> Optional[List[str]]:
        match = pattern.match(statement)
        if not match:
            return None
        return [f"DROP {object_type} IF EXISTS {match.group(1)};"]
    return reverse


def _reverse_create_trigger(statement: str) -> Optional[List[str]]:
    match = _CREATE_TRIGGER.match(statement)
    if not match:
        return None
    return [f"DROP TRIGGER IF EXISTS {match.group(1)} ON {match.group(2)};"]


_REVERSERS: List[Callable[[str], Optional[List[str]]]] = [
    _reverse_create_table,
    _reverse_alter_table,
    _simple_drop(_CREATE_INDEX, "INDEX"),
    _simple_drop(_CREATE_VIEW, "VIEW"),
    _simple_drop(_CREATE_FUNCTION, "FUNCTION"),
    _reverse_create_trigger,
    _simple_drop(_CREATE_SEQUENCE, "SEQUENCE"),
    _simple_drop(_CREATE_TYPE, "TYPE"),
]


def derive_reversal(content: str) -> ReversalPlan:
    """
    Derive a reversal plan from forward SQL.

    Args:
        content: Forward migration SQL

    Returns:
        ReversalPlan; ``plan.sql`` is None when undecidable or empty
    """
    statements = split_statements(content)
    plan = ReversalPlan()

    if any(_DROP_TABLE.search(statement) for statement in statements):
        plan.decidable = False
        plan.reason = "Forward SQL drops a table; its prior shape cannot be derived from text"
        return plan

    reversed_groups: List[List[str]] = []
    for statement in statements:
        for reverser in _REVERSERS:
            result = reverser(statement)
            if result:
                reversed_groups.append(result)
                break
        else:
            plan.skipped.append(summarize_statement(statement))

    for group in reversed(reversed_groups):
        plan.statements.extend(group)

    if not plan.statements:
        plan.reason = "No reversible statements found"
    return plan


def generate_rollback_sql(content: str) -> Optional[str]:
    """Reversal SQL for ``content``, or None when it cannot be derived."""
    return derive_reversal(content).sql
