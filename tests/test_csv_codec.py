"""
Tests for the work-log CSV codec.

Covers field escaping, the decode state machine, BOM handling and the
header gate.
"""

import pytest

from csv_codec import (
    BOM,
    WORKLOG_COLUMNS,
    NotUtf8,
    SchemaMismatch,
    check_header,
    decode,
    encode,
    encode_rows,
    escape_field,
    format_value,
    text_from_bytes,
)


# ===================================================================
# Encoding
# ===================================================================

class TestEscapeField:

    def test_plain_text_is_untouched(self):
        assert escape_field("S-24-KAMI") == "S-24-KAMI"

    def test_comma_quote_and_newline_are_quoted(self):
        assert escape_field('a,b"c\nd') == '"a,b""c\nd"'

    def test_carriage_return_is_quoted(self):
        assert escape_field("line1\rline2") == '"line1\rline2"'

    def test_lone_quote_is_doubled(self):
        assert escape_field('say "hi"') == '"say ""hi"""'

    def test_none_is_empty(self):
        assert escape_field(None) == ""

    @pytest.mark.parametrize("value, expected", [
        (True, "true"),
        (False, "false"),
        (480.0, "480"),
        (1.5, "1.5"),
        (0.1, "0.1"),
        (7, "7"),
        ("本", "本"),
    ])
    def test_format_value(self, value, expected):
        assert format_value(value) == expected


class TestEncode:

    def test_header_line_and_bom(self):
        text = encode([])
        assert text.startswith(BOM)
        assert text[len(BOM):] == ",".join(WORKLOG_COLUMNS)

    def test_one_line_per_row_without_trailing_newline(self):
        text = encode_rows(["a", "b"], [["1", "2"], ["3", "4"]])
        assert text == BOM + "a,b\n1,2\n3,4"

    def test_records_in_schema_order(self, make_record):
        rec = make_record(work_date="2025-08-01", worker_name="Sato", work_time_min=480, ky_check=True)
        line = encode([rec]).split("\n")[1]
        cells = line.split(",")
        assert len(cells) == len(WORKLOG_COLUMNS)
        assert cells[WORKLOG_COLUMNS.index("work_date")] == "2025-08-01"
        assert cells[WORKLOG_COLUMNS.index("work_time_min")] == "480"
        assert cells[WORKLOG_COLUMNS.index("ky_check")] == "true"
        assert cells[WORKLOG_COLUMNS.index("incident")] == "none"


# ===================================================================
# Decoding
# ===================================================================

class TestDecode:

    def test_simple_table(self):
        assert decode("a,b\n1,2") == [["a", "b"], ["1", "2"]]

    def test_quoted_field_with_delimiters(self):
        assert decode('x\n"a,b""c\nd"') == [["x"], ['a,b"c\nd']]

    def test_carriage_returns_dropped(self):
        assert decode("a,b\r\n1,2\r\n") == [["a", "b"], ["1", "2"]]

    def test_trailing_row_flushed_without_newline(self):
        assert decode("a\nlast") == [["a"], ["last"]]

    def test_trailing_empty_field_flushed(self):
        assert decode("a,") == [["a", ""]]

    def test_bom_stripped_from_first_cell(self):
        assert decode(BOM + "work_date,note") == [["work_date", "note"]]

    def test_unterminated_quote_runs_to_end(self):
        assert decode('a,"b,c\nd') == [["a", "b,c\nd"]]

    def test_empty_text(self):
        assert decode("") == []

    def test_blank_line_is_single_empty_cell(self):
        assert decode("a\n\nb") == [["a"], [""], ["b"]]

    @pytest.mark.parametrize("raw", ['a,b"c\nd', "line1\rline2", "crlf\r\ninside"])
    def test_escape_then_decode_returns_literal(self, raw):
        assert decode(escape_field(raw)) == [[raw]]


# ===================================================================
# Header gate
# ===================================================================

class TestCheckHeader:

    def test_exact_header_passes(self):
        check_header(list(WORKLOG_COLUMNS))

    def test_swapped_columns_rejected(self):
        cols = list(WORKLOG_COLUMNS)
        cols[0], cols[1] = cols[1], cols[0]
        with pytest.raises(SchemaMismatch) as exc:
            check_header(cols)
        assert exc.value.expected == WORKLOG_COLUMNS
        assert exc.value.found == cols

    def test_renamed_column_rejected(self):
        cols = list(WORKLOG_COLUMNS)
        cols[-1] = "notes"
        with pytest.raises(SchemaMismatch):
            check_header(cols)

    def test_missing_column_rejected(self):
        with pytest.raises(SchemaMismatch):
            check_header(WORKLOG_COLUMNS[:-1])

    def test_schema_mismatch_is_value_error(self):
        assert issubclass(SchemaMismatch, ValueError)


# ===================================================================
# Uploaded bytes
# ===================================================================

class TestTextFromBytes:

    def test_utf8_with_bom_kept_for_decode(self):
        data = (BOM + "work_date,note\n2025-08-01,間伐").encode("utf-8")
        text = text_from_bytes(data)
        assert decode(text) == [["work_date", "note"], ["2025-08-01", "間伐"]]

    def test_shift_jis_rejected(self):
        with pytest.raises(NotUtf8):
            text_from_bytes("作業日,備考\n2025-08-01,間伐".encode("shift_jis"))

    def test_not_utf8_is_value_error(self):
        assert issubclass(NotUtf8, ValueError)
