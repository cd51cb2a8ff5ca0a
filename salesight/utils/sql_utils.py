"""
Shared SQL utility functions.
Consolidates common SQL helpers used across the codebase.
"""


def quote_identifier(name: str) -> str:
    """
    Quote a SQL identifier for DuckDB.

    Raw CSV headers can contain anything (spaces, quotes, leading digits),
    so identifiers are always quoted and embedded double quotes are doubled.

    Args:
        name: Column or table name

    Returns:
        Quoted identifier

    Examples:
        >>> quote_identifier("Sales Amount")
        '"Sales Amount"'
        >>> quote_identifier('a"b')
        '"a""b"'
    """
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a string literal (single quotes doubled)."""
    return "'" + value.replace("'", "''") + "'"
