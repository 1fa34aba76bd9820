from __future__ import annotations

from pathlib import Path

import pytest
from lsprotocol.types import Position, Range, TextEdit

from lspbridge.editor import FileEditor, FileWindow
from lspbridge.edits import (
    apply_edit_command,
    apply_text_edits,
    apply_window_edits,
    apply_workspace_edit,
    collect_workspace_edits,
    edit_command,
    escape_text,
    parse_edit_command,
    unescape_text,
)
from lspbridge.exceptions import EditApplicationError, LspClientError
from lspbridge.text import filename_to_uri


def _edit(sl: int, sc: int, el: int, ec: int, text: str) -> TextEdit:
    return TextEdit(
        range=Range(start=Position(line=sl, character=sc), end=Position(line=el, character=ec)),
        new_text=text,
    )


def _json_edit(sl: int, sc: int, el: int, ec: int, text: str) -> dict:
    return {
        "range": {
            "start": {"line": sl, "character": sc},
            "end": {"line": el, "character": ec},
        },
        "newText": text,
    }


def test_edit_command_format() -> None:
    assert edit_command(_edit(2, 4, 3, 0, "a\nb")) == "2+#4,3+#0c/a\\nb"


def test_escape_is_lossless() -> None:
    for text in ["", "plain", "two\nlines\n", "back\\slash", "literal \\n kept", "\\\n"]:
        assert unescape_text(escape_text(text)) == text
        assert "\n" not in escape_text(text)


def test_edit_command_round_trip_replaces_range() -> None:
    body = "func main() {\n\tfmt.Println()\n}\n"
    edit = _edit(1, 1, 1, 12, "log.Printf(\"%s\\n\",\n\t\tx)")
    command = edit_command(edit)
    parsed = parse_edit_command(command)
    assert parsed == edit
    assert apply_edit_command(body, command) == (
        "func main() {\n\tlog.Printf(\"%s\\n\",\n\t\tx)()\n}\n"
    )


def test_parse_edit_command_rejects_garbage() -> None:
    with pytest.raises(LspClientError):
        parse_edit_command("1,2c/x")


def test_apply_text_edits_unsorted() -> None:
    body = "aaa\nbbb\nccc\n"
    edits = [_edit(2, 0, 2, 3, "C"), _edit(0, 0, 0, 3, "A"), _edit(1, 1, 1, 2, "")]
    assert apply_text_edits(body, edits) == "A\nbb\nC\n"


def test_insertions_at_same_point_keep_order() -> None:
    assert apply_text_edits("x", [_edit(0, 0, 0, 0, "a"), _edit(0, 0, 0, 0, "b")]) == "abx"


def test_overlapping_edits_are_rejected() -> None:
    with pytest.raises(EditApplicationError, match="overlapping"):
        apply_text_edits("abcdef", [_edit(0, 0, 0, 4, "x"), _edit(0, 2, 0, 6, "y")])


def test_unordered_range_is_rejected() -> None:
    with pytest.raises(EditApplicationError, match="unordered"):
        apply_text_edits("abc\ndef", [_edit(1, 0, 0, 1, "x")])


def test_apply_window_edits_moves_cursor(tmp_path: Path) -> None:
    path = tmp_path / "a.go"
    path.write_text("package a\n\nvar x = 1\n", encoding="utf-8")
    window = FileWindow(path, cursor=(15, 15))
    apply_window_edits(window, [_edit(0, 8, 0, 9, "alpha"), _edit(2, 4, 2, 5, "y")])
    assert window.body() == "package alpha\n\nvar y = 1\n"
    assert window.cursor() == (19, 19)
    window.save()
    assert path.read_text(encoding="utf-8") == window.body()


def test_collect_workspace_edits_both_shapes() -> None:
    changes = {"changes": {"file:///a.go": [_json_edit(0, 0, 0, 1, "x")]}}
    grouped, failures = collect_workspace_edits(changes)
    assert list(grouped) == ["file:///a.go"]
    assert failures == []

    document_changes = {
        "documentChanges": [
            {"textDocument": {"uri": "file:///b.go", "version": 3}, "edits": [_json_edit(0, 0, 0, 0, "y")]},
            {"kind": "rename", "oldUri": "file:///b.go", "newUri": "file:///c.go"},
        ]
    }
    grouped, failures = collect_workspace_edits(document_changes)
    assert grouped["file:///b.go"][0].new_text == "y"
    assert len(failures) == 1
    assert "rename" in failures[0]


def test_apply_workspace_edit_across_documents(tmp_path: Path) -> None:
    first = tmp_path / "a.go"
    second = tmp_path / "b.go"
    first.write_text("old()\n", encoding="utf-8")
    second.write_text("x := old()\n", encoding="utf-8")
    editor = FileEditor()
    current = editor.add_window(FileWindow(first))
    workspace_edit = {
        "changes": {
            filename_to_uri(first): [_json_edit(0, 0, 0, 3, "fresh")],
            filename_to_uri(second): [_json_edit(0, 5, 0, 8, "fresh")],
        }
    }
    touched = apply_workspace_edit(editor, workspace_edit)
    assert len(touched) == 2
    assert current.body() == "fresh()\n"
    editor.save_all()
    assert second.read_text(encoding="utf-8") == "x := fresh()\n"


def test_apply_workspace_edit_reports_partial_failure(tmp_path: Path) -> None:
    present = tmp_path / "a.go"
    present.write_text("abc\n", encoding="utf-8")
    editor = FileEditor()
    workspace_edit = {
        "changes": {
            filename_to_uri(present): [_json_edit(0, 0, 0, 1, "z")],
            filename_to_uri(tmp_path / "missing.go"): [_json_edit(0, 0, 0, 0, "q")],
        }
    }
    with pytest.raises(EditApplicationError) as excinfo:
        apply_workspace_edit(editor, workspace_edit)
    assert len(excinfo.value.failures) == 1
    assert "missing.go" in excinfo.value.failures[0]
    assert editor.open_window(str(present)).body() == "zbc\n"
