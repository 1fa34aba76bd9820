"""Handling of server-initiated requests and notifications.

Everything here runs on the session's reader thread. The diagnostics sink
writes to the outside world, so it runs on a worker thread and is waited on for
at most the handler's time budget. ``workspace/applyEdit`` only touches
in-memory buffers and is applied inline; its reply always matches the buffers.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Protocol, Sequence, TextIO

from lsprotocol.types import Diagnostic, MessageType

from lspbridge.editor import Editor
from lspbridge.edits import apply_workspace_edit
from lspbridge.exceptions import LspClientError, MethodNotFound
from lspbridge.json_types import JSONObject, JSONValue
from lspbridge.output import print_diagnostics
from lspbridge.protocol import as_diagnostics_params

logger = logging.getLogger(__name__)
server_logger = logging.getLogger("lspbridge.server")

_MESSAGE_LEVELS = {
    MessageType.Error: logging.ERROR,
    MessageType.Warning: logging.WARNING,
    MessageType.Info: logging.INFO,
    MessageType.Log: logging.INFO,
}

_NO_OP_REQUESTS = frozenset(
    {
        "client/registerCapability",
        "client/unregisterCapability",
        "window/showMessageRequest",
        "window/workDoneProgress/create",
    }
)


class DiagnosticsWriter(Protocol):
    def write(self, uri: str, diagnostics: Sequence[Diagnostic]) -> None: ...


class StreamDiagnosticsWriter:
    def __init__(self, out: TextIO) -> None:
        self._out = out

    def write(self, uri: str, diagnostics: Sequence[Diagnostic]) -> None:
        print_diagnostics(self._out, uri, diagnostics)
        self._out.flush()


def _message_level(raw: JSONValue) -> int:
    try:
        return _MESSAGE_LEVELS.get(MessageType(raw), logging.INFO)
    except ValueError:
        return logging.INFO


class ClientHandler:
    def __init__(
        self,
        editor: Editor,
        diagnostics_writer: DiagnosticsWriter | None = None,
        *,
        hide_diagnostics: bool = False,
        verbose: bool = False,
        time_budget: float = 2.0,
        workspace_folders: Sequence[JSONObject] = (),
    ) -> None:
        self.editor = editor
        self.diagnostics_writer = diagnostics_writer
        self.hide_diagnostics = hide_diagnostics
        self.verbose = verbose
        self.time_budget = time_budget
        self.workspace_folders = list(workspace_folders)
        self._lock = threading.Lock()
        self._published = threading.Condition(self._lock)
        self._diagnostics: dict[str, list[Diagnostic]] = {}
        self._sink = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lsp-diagnostics")

    def close(self) -> None:
        self._sink.shutdown(wait=False)

    def diagnostics(self, uri: str) -> list[Diagnostic]:
        with self._lock:
            return list(self._diagnostics.get(uri, ()))

    def wait_diagnostics(self, uri: str, timeout: float) -> list[Diagnostic]:
        """Return diagnostics for ``uri``, waiting up to ``timeout`` for a first publish."""
        with self._published:
            self._published.wait_for(lambda: uri in self._diagnostics, timeout=timeout)
            return list(self._diagnostics.get(uri, ()))

    def handle_notification(self, method: str, params: JSONValue) -> None:
        if method == "textDocument/publishDiagnostics":
            self._publish_diagnostics(params)
        elif method == "window/logMessage":
            self._log_message(params, always=False)
        elif method == "window/showMessage":
            self._log_message(params, always=True)
        elif method.startswith("$/"):
            logger.debug("ignoring %s", method)
        else:
            logger.debug("unhandled notification %s", method)

    def handle_request(self, method: str, params: JSONValue) -> JSONValue:
        if method == "workspace/applyEdit":
            return self._apply_edit(params)
        if method == "workspace/workspaceFolders":
            return list(self.workspace_folders)
        if method == "workspace/configuration":
            items = params.get("items") if isinstance(params, dict) else None
            return [None for _ in items] if isinstance(items, list) else []
        if method in _NO_OP_REQUESTS:
            return None
        raise MethodNotFound(method)

    def _publish_diagnostics(self, params: JSONValue) -> None:
        try:
            published = as_diagnostics_params(params)
        except LspClientError as exc:
            logger.warning("ignoring diagnostics: %s", exc)
            return
        with self._published:
            self._diagnostics[published.uri] = list(published.diagnostics)
            self._published.notify_all()
        if self.hide_diagnostics or self.diagnostics_writer is None:
            return
        writer = self.diagnostics_writer
        self._bounded(
            self._sink,
            lambda: writer.write(published.uri, published.diagnostics),
            what=f"diagnostics for {published.uri}",
        )

    def _log_message(self, params: JSONValue, *, always: bool) -> None:
        if not isinstance(params, dict):
            return
        level = _message_level(params.get("type"))
        if level < logging.WARNING and not (always or self.verbose):
            return
        server_logger.log(level, "%s", params.get("message", ""))

    def _apply_edit(self, params: JSONValue) -> JSONObject:
        edit = params.get("edit") if isinstance(params, dict) else None
        label = params.get("label") if isinstance(params, dict) else None
        try:
            apply_workspace_edit(self.editor, edit)
        except LspClientError as exc:
            logger.warning("applyEdit %s failed: %s", label or "", exc)
            return {"applied": False, "failureReason": str(exc)}
        return {"applied": True}

    def _bounded(self, executor: ThreadPoolExecutor, work: Callable[[], None], *, what: str) -> None:
        future: Future[None] = executor.submit(work)
        try:
            future.result(timeout=self.time_budget)
        except FutureTimeout:
            logger.warning("%s: sink did not finish within %gs", what, self.time_budget)
        except Exception:
            logger.exception("%s: sink failed", what)
