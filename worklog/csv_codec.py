"""
Work-log CSV codec
==================

Reads and writes the fixed 19-column work-log export.

Format
------
- UTF-8 with a leading BOM so spreadsheet tools pick the right encoding.
- Comma delimited, one record per line, header first.
- A field containing a comma, a double quote, a newline or a carriage return
  is wrapped in double quotes with internal quotes doubled (RFC 4180 style).

Decoding is a small character state machine that never raises: malformed
quoting is absorbed (an unterminated quote runs to end-of-input). The only
structural failure is a header that does not match the expected columns,
reported as ``SchemaMismatch``.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, List, Sequence

LOGGER = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================

BOM = "\ufeff"

WORKLOG_COLUMNS: List[str] = [
    "work_date", "worker_id", "worker_name", "team", "site_id", "stand_id",
    "task_code", "work_time_min", "output_value", "output_unit",
    "machine_id", "machine_time_min", "weather", "ky_check", "incident",
    "photo_1", "photo_2", "photo_3", "note",
]

# The decoder drops bare "\r" outside quotes, so it must be quoted too
_NEEDS_QUOTING = (",", '"', "\n", "\r")


class SchemaMismatch(ValueError):
    """Decoded header does not equal the expected column list."""

    def __init__(self, expected: Sequence[str], found: Sequence[str]):
        self.expected = list(expected)
        self.found = list(found)
        super().__init__(
            f"Header mismatch: expected {self.expected}, found {self.found}"
        )


class NotUtf8(ValueError):
    """Uploaded bytes are not UTF-8 (typically a Shift_JIS spreadsheet save)."""


# =============================================================================
# ENCODE
# =============================================================================

def format_value(value) -> str:
    """Text form of a single cell before escaping."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value)

def escape_field(value) -> str:
    s = format_value(value)
    if any(ch in s for ch in _NEEDS_QUOTING):
        return '"' + s.replace('"', '""') + '"'
    return s

def encode_rows(header: Sequence[str], rows: Iterable[Sequence]) -> str:
    """BOM + header line + one line per row, joined by ``\\n``."""
    lines = [",".join(escape_field(h) for h in header)]
    lines.extend(",".join(escape_field(v) for v in row) for row in rows)
    return BOM + "\n".join(lines)

def encode(records) -> str:
    """Encode work-log records (anything with ``to_row()``) in schema order."""
    return encode_rows(WORKLOG_COLUMNS, (r.to_row() for r in records))


# =============================================================================
# DECODE
# =============================================================================

def text_from_bytes(data: bytes) -> str:
    """UTF-8 text of an uploaded file; the BOM, if any, is left for ``decode``."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        LOGGER.warning("Rejected non-UTF-8 upload: %s", e)
        raise NotUtf8(f"File is not UTF-8 text ({e.reason} at byte {e.start})") from e

def decode(text: str) -> List[List[str]]:
    out: List[List[str]] = []
    row: List[str] = []
    field: List[str] = []
    in_quotes = False
    i = 0
    n = len(text)

    while i < n:
        c = text[i]
        if in_quotes:
            if c == '"':
                if i + 1 < n and text[i + 1] == '"':
                    field.append('"')
                    i += 1
                else:
                    in_quotes = False
            else:
                field.append(c)
        else:
            if c == '"':
                in_quotes = True
            elif c == ",":
                row.append("".join(field))
                field = []
            elif c == "\n":
                row.append("".join(field))
                out.append(row)
                row, field = [], []
            elif c == "\r":
                pass
            else:
                field.append(c)
        i += 1

    # Flush a trailing row that has no terminating newline
    if field or row:
        row.append("".join(field))
        out.append(row)

    if out and out[0] and out[0][0].startswith(BOM):
        out[0][0] = out[0][0][len(BOM):]
    return out

def check_header(found: Sequence[str], expected: Sequence[str] = WORKLOG_COLUMNS) -> None:
    """Exact, order-sensitive header comparison."""
    if list(found) != list(expected):
        LOGGER.warning("Rejected CSV header: %s", list(found))
        raise SchemaMismatch(expected, found)
