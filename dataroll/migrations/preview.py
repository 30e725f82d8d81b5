"""
Static dry-run previews.

ORM-tool migrations are previewed by scanning their text for DDL, without
touching the database. Raw SQL is previewed as its split statements.
"""

import re
from typing import List

from ..connections.statements import split_statements
from .states import MigrationKind

PREVIEW_UNAVAILABLE = "Migration changes preview not available"

_PRISMA_DDL = re.compile(r"\b(CREATE|ALTER|DROP)\s+TABLE\b", re.IGNORECASE)
_DRIZZLE_MARKERS = ("table(", "sql`", "db.")


def preview_prisma(content: str) -> List[str]:
    """Comment lines and table DDL lines of a Prisma migration."""
    lines = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("--") or _PRISMA_DDL.search(stripped):
            lines.append(stripped)
    return lines


def preview_drizzle(content: str) -> List[str]:
    """Schema-builder and raw SQL lines of a Drizzle migration."""
    lines = []
    for line in content.splitlines():
        stripped = line.strip()
        if stripped and any(marker in stripped for marker in _DRIZZLE_MARKERS):
            lines.append(stripped)
    return lines


def preview_changes(kind: MigrationKind, content: str) -> List[str]:
    """
    Build a change preview for a dry run.

    Args:
        kind: Migration kind
        content: Migration content

    Returns:
        Preview lines; a single placeholder line when nothing matched
    """
    if kind == MigrationKind.RAW_SQL:
        lines = split_statements(content)
    elif kind == MigrationKind.PRISMA:
        lines = preview_prisma(content)
    else:
        lines = preview_drizzle(content)

    return lines or [PREVIEW_UNAVAILABLE]
