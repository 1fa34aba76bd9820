"""Workspace directories of one session.

Changes are announced with ``workspace/didChangeWorkspaceFolders`` and mirrored
into the handler, which answers ``workspace/workspaceFolders`` from the same
list. The set lives as long as the session; nothing is persisted.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence, TextIO

from lspbridge.exceptions import ConfigError
from lspbridge.handler import ClientHandler
from lspbridge.handshake import workspace_folder
from lspbridge.session import Session

logger = logging.getLogger(__name__)


def _absolute(path: str | os.PathLike[str]) -> Path:
    return Path(os.path.abspath(os.fspath(path)))


def _targets(dirs: Iterable[str | os.PathLike[str]]) -> list[Path]:
    targets: list[Path] = []
    for entry in dirs:
        path = _absolute(entry)
        if path not in targets:
            targets.append(path)
    return targets or [Path.cwd()]


class WorkspaceFolders:
    def __init__(
        self,
        folders: Sequence[str | os.PathLike[str]],
        *,
        session: Session | None = None,
        handler: ClientHandler | None = None,
    ) -> None:
        self.session = session
        self.handler = handler
        self._folders: list[Path] = []
        for folder in folders:
            path = _absolute(folder)
            if path not in self._folders:
                self._folders.append(path)

    def folders(self) -> list[Path]:
        return list(self._folders)

    def print_folders(self, out: TextIO) -> None:
        for folder in self._folders:
            out.write(f"{folder}\n")

    def add(self, dirs: Iterable[str | os.PathLike[str]] = ()) -> list[Path]:
        """Add ``dirs`` (the current directory if empty); return what was new."""
        targets = _targets(dirs)
        for path in targets:
            if not path.is_dir():
                raise ConfigError(f"not a directory: {path}")
        added = [path for path in targets if path not in self._folders]
        self._folders.extend(added)
        self._announce(added=added, removed=[])
        return added

    def remove(self, dirs: Iterable[str | os.PathLike[str]] = ()) -> list[Path]:
        """Remove ``dirs`` (the current directory if empty); return what was dropped."""
        removed = [path for path in _targets(dirs) if path in self._folders]
        for path in removed:
            self._folders.remove(path)
        self._announce(added=[], removed=removed)
        return removed

    def _announce(self, *, added: list[Path], removed: list[Path]) -> None:
        if not added and not removed:
            logger.info("workspace folders unchanged")
            return
        # The server may ask for the folder list as soon as it sees the event.
        if self.handler is not None:
            self.handler.workspace_folders = [workspace_folder(path) for path in self._folders]
        if self.session is None:
            return
        self.session.notify(
            "workspace/didChangeWorkspaceFolders",
            {
                "event": {
                    "added": [workspace_folder(path) for path in added],
                    "removed": [workspace_folder(path) for path in removed],
                }
            },
        )
