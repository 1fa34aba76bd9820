"""Conversions between editor offsets, protocol positions and printed links.

Protocol positions are zero-indexed with the character counted in UTF-16 code
units. Editor buffers are addressed by code point offsets into the body. The
only one-indexed forms are the printed links and the human ``L:C`` input.
"""

from __future__ import annotations

import os
from bisect import bisect_right
from pathlib import Path
from urllib.parse import unquote, urlparse

from lsprotocol.types import Location, Position, Range

from lspbridge.exceptions import LspClientError


def utf16_units(text: str) -> int:
    if not text:
        return 0
    return len(text.encode("utf-16-le")) // 2


def utf16_offset(line_text: str, codepoint_index: int) -> int:
    idx = max(0, min(len(line_text), int(codepoint_index)))
    return utf16_units(line_text[:idx])


def codepoint_index(line_text: str, units: int) -> int:
    remaining = max(0, int(units))
    idx = 0
    while idx < len(line_text):
        width = 1 if ord(line_text[idx]) <= 0xFFFF else 2
        if remaining < width:
            break
        remaining -= width
        idx += 1
    return idx


def _line_starts(body: str) -> list[int]:
    starts = [0]
    for idx, ch in enumerate(body):
        if ch == "\n":
            starts.append(idx + 1)
    return starts


def _line_text(body: str, starts: list[int], line: int) -> str:
    start = starts[line]
    end = starts[line + 1] - 1 if line + 1 < len(starts) else len(body)
    return body[start:end].rstrip("\r")


def offset_to_position(body: str, offset: int) -> Position:
    offset = max(0, min(len(body), int(offset)))
    starts = _line_starts(body)
    line = bisect_right(starts, offset) - 1
    line_text = _line_text(body, starts, line)
    column = min(offset - starts[line], len(line_text))
    return Position(line=line, character=utf16_offset(line_text, column))


def position_to_offset(body: str, position: Position) -> int:
    starts = _line_starts(body)
    if position.line >= len(starts):
        return len(body)
    line_text = _line_text(body, starts, position.line)
    return starts[position.line] + codepoint_index(line_text, position.character)


def compare_positions(a: Position, b: Position) -> int:
    left = (a.line, a.character)
    right = (b.line, b.character)
    if left < right:
        return -1
    if left > right:
        return 1
    return 0


def is_ordered(rng: Range) -> bool:
    return compare_positions(rng.start, rng.end) <= 0


def range_to_offsets(body: str, rng: Range) -> tuple[int, int]:
    if not is_ordered(rng):
        raise LspClientError(f"unordered range {format_range(rng)}")
    return position_to_offset(body, rng.start), position_to_offset(body, rng.end)


def filename_to_uri(path: str | Path) -> str:
    return Path(os.path.abspath(os.fspath(path))).as_uri()


def uri_to_filename(uri: str) -> str:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    return unquote(parsed.path)


def format_range(rng: Range) -> str:
    return (
        f"{rng.start.line + 1}:{rng.start.character + 1}"
        f"-{rng.end.line + 1}:{rng.end.character + 1}"
    )


def location_link(location: Location) -> str:
    return f"{uri_to_filename(location.uri)}:{format_range(location.range)}"


def position_link(filename: str, position: Position) -> str:
    return f"{filename}:{position.line + 1}:{position.character + 1}"


def parse_human_position(text: str) -> Position:
    """Parse a one-indexed ``LINE:COL`` (or bare ``LINE``) into a Position."""
    raw = text.strip()
    line_text, _, col_text = raw.partition(":")
    try:
        line = int(line_text)
        col = int(col_text) if col_text else 1
    except ValueError as exc:
        raise LspClientError(f"invalid position {text!r}") from exc
    if line < 1 or col < 1:
        raise LspClientError(f"invalid position {text!r}")
    return Position(line=line - 1, character=col - 1)
