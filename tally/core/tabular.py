"""Tabular text decoder: quote-aware delimited text into typed rows.

The tool registry answers with CSV-style text: a header row followed by data
rows. Decoding is tolerant: rows whose field count does not match the header
are dropped instead of failing the whole payload (registry responses are
sometimes truncated mid-row).

Every field that looks fully numeric becomes a number, including identifiers
such as zip codes with leading zeros. That is a known limitation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

QUOTE = '"'

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")


@dataclass
class Table:
    """Decoded payload: column names from the header and one dict per row."""
    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    dropped: int = 0  # ragged rows skipped


def split_records(text: str, delimiter: str = ",") -> list[list[str]]:
    """Tokenize ``text`` into records of raw field strings.

    A quote toggles the within-quotes state; a doubled quote inside quotes is
    a literal quote. Delimiters and newlines only separate outside quotes.
    Fields are whitespace-trimmed and blank records skipped.
    """
    records: list[list[str]] = []
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    def end_field() -> None:
        fields.append("".join(current).strip())
        current.clear()

    def end_record() -> None:
        end_field()
        if len(fields) > 1 or fields[0]:
            records.append(list(fields))
        fields.clear()

    while i < n:
        ch = text[i]
        if ch == QUOTE:
            if in_quotes and i + 1 < n and text[i + 1] == QUOTE:
                current.append(QUOTE)
                i += 1
            else:
                in_quotes = not in_quotes
        elif in_quotes:
            current.append(ch)
        elif ch == delimiter:
            end_field()
        elif ch == "\n":
            end_record()
        elif ch == "\r" and i + 1 < n and text[i + 1] == "\n":
            pass  # CRLF: the \n ends the record
        else:
            current.append(ch)
        i += 1

    if current or fields:
        end_record()
    return records


def coerce_value(value: str) -> Any:
    """Map a raw field to null, number, boolean or string, in that order."""
    if value == "" or value in ("null", "NULL"):
        return None
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def decode_table(text: str | None, delimiter: str = ",") -> Table:
    """Decode a header + rows payload into a Table."""
    if not text or not text.strip():
        return Table()

    records = split_records(text, delimiter)
    if not records:
        return Table()

    columns = records[0]
    table = Table(columns=columns)
    for record in records[1:]:
        if len(record) != len(columns):
            table.dropped += 1
            continue
        table.rows.append({col: coerce_value(val) for col, val in zip(columns, record)})
    return table
