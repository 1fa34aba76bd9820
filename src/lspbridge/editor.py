"""Editor collaborator: buffers, cursor state and byte-range replacement.

The dispatcher only talks to the ``Window``/``Editor`` protocols. The
file-backed implementation keeps each buffer in memory, takes the cursor from
the caller and writes modified buffers back on ``save``.
"""

from __future__ import annotations

import os
import sys
from typing import Protocol, TextIO

from lspbridge.exceptions import EditorError


class Window(Protocol):
    filename: str

    def body(self) -> str: ...

    def cursor(self) -> tuple[int, int]: ...

    def read_range(self, q0: int, q1: int) -> str: ...

    def replace(self, q0: int, q1: int, text: str) -> None: ...

    def save(self) -> None: ...


class Editor(Protocol):
    def open_window(self, filename: str) -> Window: ...

    def output(self, name: str) -> TextIO: ...


def _read_file(filename: str) -> str:
    try:
        with open(filename, encoding="utf-8", newline="") as handle:
            return handle.read()
    except OSError as exc:
        raise EditorError(f"failed to read {filename}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise EditorError(f"{filename} is not UTF-8 text") from exc


class FileWindow:
    def __init__(
        self,
        filename: str | os.PathLike[str],
        *,
        body: str | None = None,
        cursor: tuple[int, int] = (0, 0),
    ) -> None:
        self.filename = os.path.abspath(os.fspath(filename))
        self._body = _read_file(self.filename) if body is None else body
        self.dirty = False
        self._cursor = (0, 0)
        self.set_cursor(*cursor)

    def body(self) -> str:
        return self._body

    def cursor(self) -> tuple[int, int]:
        return self._cursor

    def set_cursor(self, q0: int, q1: int | None = None) -> None:
        end = q0 if q1 is None else q1
        self._check_range(q0, end)
        self._cursor = (q0, end)

    def _check_range(self, q0: int, q1: int) -> None:
        if q0 < 0 or q1 < q0 or q1 > len(self._body):
            raise EditorError(
                f"{self.filename}: address #{q0},#{q1} out of range (size {len(self._body)})"
            )

    def read_range(self, q0: int, q1: int) -> str:
        self._check_range(q0, q1)
        return self._body[q0:q1]

    def replace(self, q0: int, q1: int, text: str) -> None:
        self._check_range(q0, q1)
        self._body = self._body[:q0] + text + self._body[q1:]
        self.dirty = True
        delta = len(text) - (q1 - q0)
        c0, c1 = self._cursor
        if c0 >= q1:
            c0 += delta
        elif c0 > q0:
            c0 = q0
        if c1 >= q1:
            c1 += delta
        elif c1 > q0:
            c1 = q0 + len(text)
        self._cursor = (c0, max(c0, c1))

    def reload(self) -> bool:
        """Re-read the file unless the buffer has unsaved edits.

        Returns whether the body changed. The cursor is clamped to the new body.
        """
        if self.dirty:
            return False
        body = _read_file(self.filename)
        if body == self._body:
            return False
        self._body = body
        c0, c1 = self._cursor
        size = len(body)
        self._cursor = (min(c0, size), min(c1, size))
        return True

    def save(self) -> None:
        if not self.dirty:
            return
        try:
            with open(self.filename, "w", encoding="utf-8", newline="") as handle:
                handle.write(self._body)
        except OSError as exc:
            raise EditorError(f"failed to write {self.filename}: {exc}") from exc
        self.dirty = False


class FileEditor:
    def __init__(self, *, stdout: TextIO | None = None) -> None:
        self._windows: dict[str, FileWindow] = {}
        self._stdout = stdout

    def add_window(self, window: FileWindow) -> FileWindow:
        self._windows[window.filename] = window
        return window

    def open_window(self, filename: str) -> FileWindow:
        key = os.path.abspath(filename)
        window = self._windows.get(key)
        if window is None:
            window = self.add_window(FileWindow(key))
        return window

    def windows(self) -> list[FileWindow]:
        return list(self._windows.values())

    def save_all(self) -> None:
        for window in self._windows.values():
            window.save()

    def output(self, name: str) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout
