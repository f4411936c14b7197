"""
CQL Instrumentation - Operation Classifier

Turns raw CQL statements into coarse operation tags used for metric names.

Classification is total: every input, including non-strings and garbage,
maps to an Operation. A statement that cannot be classified is a normal
outcome and yields Operation.UNKNOWN.
"""

import logging
import re
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Whitespace, "--" and "//" line comments, "/* */" block comments
_LEADING_NOISE = re.compile(r"\A(?:\s+|(?:--|//)[^\n]*(?:\n|\Z)|/\*.*?\*/)*", re.DOTALL)
_FIRST_WORD = re.compile(r"\w+")
_BATCH_HEADER = re.compile(r"BEGIN\s+(?:(?:UNLOGGED|COUNTER)\s+)?BATCH\b", re.IGNORECASE)
_UPPERCASE_PREFIX = re.compile(r"^[A-Z ]*[A-Z]")


class Operation(str, Enum):
    """Leading CQL command keyword of a statement."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    BATCH = "batch"
    CREATE = "create"
    ALTER = "alter"
    DROP = "drop"
    TRUNCATE = "truncate"
    USE = "use"
    GRANT = "grant"
    REVOKE = "revoke"
    LIST = "list"

    UNKNOWN = "other"


_KEYWORDS: dict[str, Operation] = {op.value: op for op in Operation if op is not Operation.UNKNOWN}


def statement_text(query: Any) -> str:
    """
    Normalize a query argument to text.

    Accepts plain strings, bytes (decoded as UTF-8 with replacement
    characters) and driver statement objects exposing ``query_string``
    directly or through ``prepared_statement``. Batch statements are
    rendered as a ``BEGIN BATCH ... APPLY BATCH`` block of their entries.
    Anything else is passed through ``str()``.

    Args:
        query: Query argument as given to the driver

    Returns:
        Statement text, or "" when nothing usable can be extracted
    """
    try:
        if query is None:
            return ""
        if isinstance(query, str):
            return query
        if isinstance(query, (bytes, bytearray)):
            return bytes(query).decode("utf-8", errors="replace")

        entries = getattr(query, "_statements_and_parameters", None)
        if isinstance(entries, list):
            return _batch_text(query, entries)

        text = getattr(query, "query_string", None)
        if text is None:
            prepared = getattr(query, "prepared_statement", None)
            text = getattr(prepared, "query_string", None)
        if isinstance(text, (str, bytes, bytearray)):
            return statement_text(text)
        if text is not None:
            return str(text)

        return str(query)
    except Exception as e:
        logger.debug(f"Could not extract statement text: {e}", extra={"query_type": type(query).__name__})
        return ""


def _batch_text(batch: Any, entries: list[Any]) -> str:
    """
    Render a driver BatchStatement as a BEGIN ... APPLY BATCH block.

    Entries are (is_prepared, statement, parameters) tuples. Prepared entries
    only carry the statement id, which is rendered as a comment.
    """
    kind = getattr(getattr(batch, "batch_type", None), "name", None)
    header = f"BEGIN {kind} BATCH" if kind in ("UNLOGGED", "COUNTER") else "BEGIN BATCH"

    statements = []
    for is_prepared, statement, *_ in entries:
        if is_prepared and isinstance(statement, (bytes, bytearray)):
            statements.append(f"/* prepared {bytes(statement).hex()} */")
        else:
            statements.append(f"{statement_text(statement)};")

    return " ".join([header, *statements, "APPLY BATCH"])


def _strip_leading_noise(text: str) -> str:
    return text[_LEADING_NOISE.match(text).end() :]  # type: ignore[union-attr]


def classify(query: Any) -> Operation:
    """
    Classify a statement by its leading command keyword.

    Leading whitespace and comments are skipped and the keyword is matched
    case-insensitively. ``BEGIN [UNLOGGED | COUNTER] BATCH`` counts as a batch.

    Args:
        query: Statement text (non-strings are normalized first)

    Returns:
        Matching Operation, Operation.UNKNOWN when nothing matches

    Example:
        >>> classify("  /* users */ select * from users")
        <Operation.SELECT: 'select'>
        >>> classify("garbled;;")
        <Operation.UNKNOWN: 'other'>
    """
    text = _strip_leading_noise(statement_text(query))

    match = _FIRST_WORD.match(text)
    if match is None:
        return Operation.UNKNOWN

    word = match.group(0).lower()
    if word == "begin":
        return Operation.BATCH if _BATCH_HEADER.match(text) else Operation.UNKNOWN

    return _KEYWORDS.get(word, Operation.UNKNOWN)


def statement_prefix(query: Any) -> str | None:
    """
    Extract the leading run of uppercase words of a statement.

    A trailing " FROM" is dropped, so "SELECT * FROM users" gives "SELECT"
    and "INSERT INTO users" gives "INSERT INTO". Lowercase statements
    have no prefix.

    Args:
        query: Statement text (non-strings are normalized first)

    Returns:
        Uppercase prefix, or None
    """
    match = _UPPERCASE_PREFIX.match(statement_text(query))
    if match is None:
        return None

    prefix = match.group(0)
    if prefix.endswith(" FROM"):
        prefix = prefix[: -len(" FROM")]
    return prefix.strip() or None
