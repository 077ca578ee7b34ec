"""
PostgREST filter encoding.

eq. takes the rest of the parameter as the literal value, so it is sent
bare: a quoted date or id would be compared with its quotes included.
Inside in.(...) commas and parentheses are syntax, so string members are
quoted there, with embedded double quotes doubled.
"""

from typing import Iterable


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def encode_eq(value: str | int) -> str:
    return f"eq.{value}"


def encode_in_list(values: Iterable[str | int | float]) -> str:
    """in.(...) with strings quoted and numbers left bare."""
    parts = [
        str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else _quote(str(v))
        for v in values
    ]
    return f"in.({','.join(parts)})"
