"""Protocol handshake and capability negotiation."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Sequence

from lspbridge import __version__
from lspbridge.exceptions import HandshakeError, LspClientError
from lspbridge.json_types import JSONObject, JSONValue
from lspbridge.session import Session
from lspbridge.text import filename_to_uri

logger = logging.getLogger(__name__)

CLIENT_NAME = "lspbridge"
ORGANIZE_IMPORTS = "source.organizeImports"


def client_capabilities() -> JSONObject:
    return {
        "workspace": {
            "applyEdit": True,
            "workspaceFolders": True,
            "workspaceEdit": {"documentChanges": True},
        },
        "textDocument": {
            "synchronization": {"didSave": True},
            "codeAction": {
                "codeActionLiteralSupport": {
                    "codeActionKind": {"valueSet": [ORGANIZE_IMPORTS]},
                },
            },
            "documentSymbol": {"hierarchicalDocumentSymbolSupport": True},
            "completion": {"completionItem": {"snippetSupport": True}},
            "hover": {"contentFormat": ["plaintext", "markdown"]},
            "publishDiagnostics": {"relatedInformation": False},
        },
    }


def workspace_folder(path: str | os.PathLike[str]) -> JSONObject:
    absolute = Path(os.path.abspath(os.fspath(path)))
    return {"uri": filename_to_uri(absolute), "name": absolute.name or str(absolute)}


def initialize_params(
    root_directory: str | os.PathLike[str],
    workspace_folders: Sequence[str | os.PathLike[str]] = (),
    options: Mapping[str, JSONValue] | None = None,
) -> JSONObject:
    root = Path(os.path.abspath(os.fspath(root_directory)))
    params: JSONObject = {
        "processId": os.getpid(),
        "clientInfo": {"name": CLIENT_NAME, "version": __version__},
        "rootUri": filename_to_uri(root),
        "rootPath": str(root),
        "capabilities": client_capabilities(),
        "workspaceFolders": [workspace_folder(folder) for folder in workspace_folders] or None,
    }
    if options:
        params["initializationOptions"] = dict(options)
    return params


def initialize(
    session: Session,
    root_directory: str | os.PathLike[str],
    workspace_folders: Sequence[str | os.PathLike[str]] = (),
    options: Mapping[str, JSONValue] | None = None,
    *,
    timeout: float | None = None,
) -> JSONObject:
    """Run initialize/initialized and cache the server capabilities."""
    params = initialize_params(root_directory, workspace_folders, options)
    session.begin_handshake()
    try:
        result = session.call("initialize", params, timeout=timeout)
        if not isinstance(result, dict):
            raise HandshakeError(
                f"initialize failed: unexpected result {type(result).__name__}"
            )
        capabilities = result.get("capabilities")
        if not isinstance(capabilities, dict):
            capabilities = {}
        session.notify("initialized", {})
    except LspClientError as exc:
        session.close()
        if isinstance(exc, HandshakeError):
            raise
        raise HandshakeError(f"initialize failed: {exc}") from exc
    session.complete_handshake(capabilities)
    server_info = result.get("serverInfo")
    if isinstance(server_info, dict):
        logger.debug(
            "initialized %s %s",
            server_info.get("name", "server"),
            server_info.get("version", ""),
        )
    return capabilities


def shutdown(session: Session, *, timeout: float | None = None) -> None:
    session.call("shutdown", None, timeout=timeout)
    session.notify("exit", None)
