"""
SQL statement splitting.

Splits a script on ``;`` boundaries while respecting quoted strings, quoted
identifiers, dollar-quoted bodies and comments. This is a tokenizer, not a
parser: it only has to find statement boundaries.
"""

import re
from typing import List

_DOLLAR_TAG = re.compile(r"\$[A-Za-z_0-9]*\$")


def split_statements(sql: str) -> List[str]:
    """
    Split SQL into individual statements.

    Comments are dropped, statements are stripped and returned without the
    terminating semicolon. Empty statements are skipped.

    Args:
        sql: Script text

    Returns:
        List of statements in source order
    """
    statements: List[str] = []
    current: List[str] = []
    i = 0
    length = len(sql)

    while i < length:
        char = sql[i]
        nxt = sql[i + 1] if i + 1 < length else ""

        if char == "-" and nxt == "-":
            end = sql.find("\n", i)
            i = length if end == -1 else end
            continue

        if char == "/" and nxt == "*":
            end = sql.find("*/", i + 2)
            i = length if end == -1 else end + 2
            current.append(" ")
            continue

        if char in ("'", '"', "`"):
            end = _find_closing_quote(sql, i, char)
            current.append(sql[i:end])
            i = end
            continue

        if char == "$":
            match = _DOLLAR_TAG.match(sql, i)
            if match:
                tag = match.group(0)
                end = sql.find(tag, match.end())
                end = length if end == -1 else end + len(tag)
                current.append(sql[i:end])
                i = end
                continue

        if char == ";":
            _flush(current, statements)
            current = []
            i += 1
            continue

        current.append(char)
        i += 1

    _flush(current, statements)
    return statements


def _find_closing_quote(sql: str, start: int, quote: str) -> int:
    """Return the index just past the quote that closes ``sql[start]``."""
    i = start + 1
    length = len(sql)
    while i < length:
        if sql[i] == "\\" and quote == "'":
            i += 2
            continue
        if sql[i] == quote:
            # doubled quote is an escaped quote
            if i + 1 < length and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return length


def _flush(current: List[str], statements: List[str]) -> None:
    statement = "".join(current).strip()
    if statement:
        statements.append(statement)


def summarize_statement(statement: str, limit: int = 100) -> str:
    """Collapse whitespace and truncate a statement for change summaries."""
    collapsed = " ".join(statement.split())
    if len(collapsed) > limit:
        return collapsed[:limit] + "..."
    return collapsed
