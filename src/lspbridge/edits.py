"""Translating protocol TextEdits into buffer mutations and edit commands.

An edit command is the single self-contained text form of a TextEdit::

    SL+#SC,EL+#ECc/TEXT

with zero-indexed protocol coordinates and TEXT escaped so that it fits on one
line (backslash as ``\\\\``, newline as ``\\n``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Sequence

from lsprotocol.types import Position, Range, TextEdit

from lspbridge.editor import Editor, Window
from lspbridge.exceptions import EditApplicationError, LspClientError
from lspbridge.json_types import JSONValue
from lspbridge.protocol import structure
from lspbridge.text import format_range, is_ordered, range_to_offsets, uri_to_filename

logger = logging.getLogger(__name__)

_EDIT_COMMAND_RE = re.compile(r"(\d+)\+#(\d+),(\d+)\+#(\d+)c/(.*)", re.DOTALL)


def escape_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def unescape_text(text: str) -> str:
    out: list[str] = []
    idx = 0
    while idx < len(text):
        ch = text[idx]
        if ch == "\\" and idx + 1 < len(text) and text[idx + 1] in "\\n":
            out.append("\n" if text[idx + 1] == "n" else "\\")
            idx += 2
            continue
        out.append(ch)
        idx += 1
    return "".join(out)


def edit_command(edit: TextEdit) -> str:
    start = edit.range.start
    end = edit.range.end
    return (
        f"{start.line}+#{start.character},{end.line}+#{end.character}"
        f"c/{escape_text(edit.new_text)}"
    )


def parse_edit_command(command: str) -> TextEdit:
    match = _EDIT_COMMAND_RE.fullmatch(command.rstrip("\n"))
    if match is None:
        raise LspClientError(f"malformed edit command {command!r}")
    sl, sc, el, ec = (int(match.group(idx)) for idx in range(1, 5))
    return TextEdit(
        range=Range(
            start=Position(line=sl, character=sc),
            end=Position(line=el, character=ec),
        ),
        new_text=unescape_text(match.group(5)),
    )


@dataclass(frozen=True)
class _Span:
    start: int
    end: int
    order: int
    text: str


def _edit_spans(body: str, edits: Sequence[TextEdit]) -> list[_Span]:
    spans: list[_Span] = []
    for order, edit in enumerate(edits):
        if not is_ordered(edit.range):
            raise EditApplicationError([f"unordered range {format_range(edit.range)}"])
        start, end = range_to_offsets(body, edit.range)
        spans.append(_Span(start, end, order, edit.new_text))
    spans.sort(key=lambda span: (span.start, span.end, span.order))
    for prev, cur in zip(spans, spans[1:]):
        if cur.start < prev.end:
            raise EditApplicationError(
                [
                    f"overlapping edits at {format_range(edits[prev.order].range)}"
                    f" and {format_range(edits[cur.order].range)}"
                ]
            )
    return spans


def apply_text_edits(body: str, edits: Sequence[TextEdit]) -> str:
    """Return ``body`` with every edit applied against the original text."""
    updated = body
    for span in reversed(_edit_spans(body, edits)):
        updated = updated[: span.start] + span.text + updated[span.end :]
    return updated


def apply_edit_command(body: str, command: str) -> str:
    return apply_text_edits(body, [parse_edit_command(command)])


def apply_window_edits(window: Window, edits: Sequence[TextEdit]) -> None:
    # Offsets are computed once against the unmodified body; applying from
    # the end keeps every earlier offset valid.
    for span in reversed(_edit_spans(window.body(), edits)):
        window.replace(span.start, span.end, span.text)


def _document_edits(edits: JSONValue) -> list[TextEdit]:
    if not isinstance(edits, list):
        raise LspClientError("edits must be a list")
    return [structure(item, TextEdit, method="workspace/applyEdit") for item in edits]


def collect_workspace_edits(
    workspace_edit: JSONValue,
) -> tuple[dict[str, list[TextEdit]], list[str]]:
    """Group a WorkspaceEdit by document URI.

    Returns the per-document edits and a list of operations that cannot be
    applied (file create/rename/delete, malformed entries).
    """
    edit = workspace_edit if isinstance(workspace_edit, dict) else {}
    grouped: dict[str, list[TextEdit]] = {}
    unsupported: list[str] = []

    document_changes = edit.get("documentChanges")
    if isinstance(document_changes, list):
        for item in document_changes:
            if not isinstance(item, dict):
                unsupported.append(f"malformed document change {item!r}")
                continue
            if "kind" in item:
                unsupported.append(f"unsupported file operation {item.get('kind')!r}")
                continue
            text_document = item.get("textDocument")
            uri = text_document.get("uri") if isinstance(text_document, dict) else None
            if not isinstance(uri, str):
                unsupported.append("document change without a URI")
                continue
            try:
                grouped.setdefault(uri, []).extend(_document_edits(item.get("edits")))
            except LspClientError as exc:
                unsupported.append(f"{uri}: {exc}")
        return grouped, unsupported

    changes = edit.get("changes")
    if isinstance(changes, dict):
        for uri, edits in changes.items():
            try:
                grouped.setdefault(str(uri), []).extend(_document_edits(edits))
            except LspClientError as exc:
                unsupported.append(f"{uri}: {exc}")
    return grouped, unsupported


def apply_workspace_edit(editor: Editor, workspace_edit: JSONValue) -> list[Window]:
    """Apply each document's edits to that document's window.

    Every failure is collected; documents that applied cleanly stay modified,
    so a raised EditApplicationError may describe a partial application.
    """
    grouped, failures = collect_workspace_edits(workspace_edit)
    touched: list[Window] = []
    for uri, edits in grouped.items():
        if not uri.startswith("file:"):
            failures.append(f"{uri}: not a file URI")
            continue
        filename = uri_to_filename(uri)
        try:
            window = editor.open_window(filename)
            apply_window_edits(window, edits)
        except LspClientError as exc:
            failures.append(f"{filename}: {exc}")
            continue
        logger.debug("applied %d edit(s) to %s", len(edits), filename)
        touched.append(window)
    if failures:
        raise EditApplicationError(failures)
    return touched
