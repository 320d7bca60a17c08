"""Line-oriented CSV field splitting and header column detection."""

from __future__ import annotations

from typing import BinaryIO, Iterator, List, Sequence

from ..models import ColumnLayout, ResourceError

CSV_SEPARATOR = ","
CSV_QUOTE = '"'
MAX_COLUMNS = 16


def strip_eol(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


def decode_lines(stream: BinaryIO, encoding: str = "utf-8") -> Iterator[str]:
    """Yield the lines of a binary stream as text, terminators included.

    Decoding happens line by line so a bad byte sequence is reported with the
    1-based number of the line that holds it.
    """
    for line_num, raw in enumerate(stream, start=1):
        try:
            yield raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise ResourceError("Unable to decode line", details=str(e), line_number=line_num) from e


def tokenize_line(line: str, max_columns: int = MAX_COLUMNS) -> List[str]:
    """Split one CSV line into at most *max_columns* fields.

    A field that starts with a double quote may contain separators, and a
    doubled quote inside it stands for a literal quote. Unquoted whitespace is
    kept as-is. Once ``max_columns - 1`` fields have been split off, the rest of
    the line is returned untouched as the final field.
    """
    if max_columns <= 0:
        return []

    line = strip_eol(line)
    if max_columns == 1:
        return [line]

    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    field_start = True
    length = len(line)
    i = 0

    while i < length:
        c = line[i]
        nxt = line[i + 1] if i + 1 < length else ""

        if in_quotes:
            if c == CSV_QUOTE and nxt == CSV_QUOTE:
                current.append(CSV_QUOTE)
                i += 2
                continue
            if c == CSV_QUOTE:
                in_quotes = False
                # a closing quote anywhere but the end of the field is kept
                if nxt not in (CSV_SEPARATOR, ""):
                    current.append(c)
                i += 1
                continue
            current.append(c)
            i += 1
            continue

        if c == CSV_QUOTE and field_start:
            in_quotes = True
            field_start = False
            i += 1
            continue

        if c == CSV_SEPARATOR:
            fields.append("".join(current))
            current = []
            field_start = True
            i += 1
            if len(fields) >= max_columns - 1:
                fields.append(line[i:])
                return fields
            continue

        field_start = False
        current.append(c)
        i += 1

    fields.append("".join(current))
    return fields


def detect_columns(header: Sequence[str], required_columns: Sequence[str]) -> ColumnLayout:
    """Find the position of each required column in a tokenized header row.

    The first occurrence of a name wins. The returned layout records how many
    required names were found and the highest column index among them, which
    callers use to check that later rows are wide enough.
    """
    layout = ColumnLayout(required=list(required_columns))
    if not header or not required_columns:
        return layout

    wanted = set(required_columns)
    for position, name in enumerate(header):
        if name in wanted and name not in layout.positions:
            layout.positions[name] = position
            layout.highest_column = max(layout.highest_column, position)

    layout.found = len(layout.positions)
    return layout
