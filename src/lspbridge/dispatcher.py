"""One operation per editor-facing command.

Each operation reads the document and cursor from the current window, issues
its request(s) on the session and hands the result to the translators in
``edits`` and ``output``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence, TextIO

from lsprotocol.types import CompletionItem, Diagnostic, Location, Position

from lspbridge.editor import Editor, Window
from lspbridge.edits import apply_window_edits, apply_workspace_edit
from lspbridge.exceptions import LspClientError
from lspbridge.handshake import ORGANIZE_IMPORTS
from lspbridge.json_types import JSONObject, JSONValue
from lspbridge.language_id import language_id_for_path
from lspbridge.output import (
    filter_completions,
    print_completions,
    print_diagnostics,
    print_document_symbols,
    print_locations,
)
from lspbridge.plumb import Plumber, plumb_location
from lspbridge.protocol import (
    as_completion_items,
    as_locations,
    as_signature_help,
    as_symbols,
    as_text_edits,
    documentation_text,
    hover_contents,
    primary_edit,
)
from lspbridge.session import Session
from lspbridge.text import filename_to_uri, offset_to_position, range_to_offsets

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormattingOptions:
    tab_size: int = 8
    insert_spaces: bool = False

    def to_json(self) -> JSONObject:
        return {"tabSize": self.tab_size, "insertSpaces": self.insert_spaces}


class CommandDispatcher:
    def __init__(
        self,
        session: Session,
        window: Window,
        editor: Editor,
        *,
        stdout: TextIO,
        stderr: TextIO,
        plumber: Plumber | None = None,
        formatting: FormattingOptions = FormattingOptions(),
        diagnostics_source: Callable[[str], list[Diagnostic]] | None = None,
    ) -> None:
        self.session = session
        self.window = window
        self.editor = editor
        self.stdout = stdout
        self.stderr = stderr
        self.plumber = plumber or Plumber()
        self.formatting = formatting
        self.diagnostics_source = diagnostics_source
        self._versions: dict[str, int] = {}

    # Context from the window.

    @property
    def uri(self) -> str:
        return filename_to_uri(self.window.filename)

    def _document(self) -> JSONObject:
        return {"uri": self.uri}

    def _position(self) -> Position:
        q0, _ = self.window.cursor()
        return offset_to_position(self.window.body(), q0)

    def _position_params(self) -> JSONObject:
        position = self._position()
        return {
            "textDocument": self._document(),
            "position": {"line": position.line, "character": position.character},
        }

    def _whole_document(self) -> JSONObject:
        end = offset_to_position(self.window.body(), len(self.window.body()))
        return {
            "start": {"line": 0, "character": 0},
            "end": {"line": end.line, "character": end.character},
        }

    def _info(self, message: str) -> None:
        self.stderr.write(message + "\n")

    # Document synchronisation.

    def did_open(self) -> None:
        uri = self.uri
        self._versions[uri] = 1
        self.session.notify(
            "textDocument/didOpen",
            {
                "textDocument": {
                    "uri": uri,
                    "languageId": language_id_for_path(self.window.filename),
                    "version": 1,
                    "text": self.window.body(),
                }
            },
        )

    def did_change(self) -> None:
        uri = self.uri
        version = self._versions.get(uri, 1) + 1
        self._versions[uri] = version
        self.session.notify(
            "textDocument/didChange",
            {
                "textDocument": {"uri": uri, "version": version},
                "contentChanges": [{"text": self.window.body()}],
            },
        )

    def did_save(self) -> None:
        self.session.notify("textDocument/didSave", {"textDocument": self._document()})

    def did_close(self) -> None:
        self._versions.pop(self.uri, None)
        self.session.notify("textDocument/didClose", {"textDocument": self._document()})

    # Locations.

    def _locations(self, method: str, params: JSONObject | None = None) -> list[Location]:
        result = self.session.call(method, params or self._position_params())
        return as_locations(result, method=method)

    def _show_locations(self, locations: Sequence[Location], *, print_: bool, empty: str) -> None:
        if not locations:
            self._info(empty)
            return
        if print_:
            print_locations(self.stdout, locations)
            return
        if len(locations) > 1:
            logger.debug("plumbing the first of %d locations", len(locations))
        plumb_location(self.plumber, locations[0])

    def definition(self, print_: bool = False) -> None:
        locations = self._locations("textDocument/definition")
        self._show_locations(locations, print_=print_, empty="No definition found.")

    def type_definition(self, print_: bool = False) -> None:
        locations = self._locations("textDocument/typeDefinition")
        self._show_locations(locations, print_=print_, empty="No type definition found.")

    def implementation(self, print_: bool = True) -> None:
        locations = self._locations("textDocument/implementation")
        self._show_locations(locations, print_=print_, empty="No implementations found.")

    def references(self) -> None:
        params = self._position_params()
        params["context"] = {"includeDeclaration": True}
        locations = self._locations("textDocument/references", params)
        if not locations:
            self._info("No references found.")
            return
        print_locations(self.stdout, locations)

    # Text results.

    def hover(self) -> None:
        method = "textDocument/hover"
        pieces = hover_contents(self.session.call(method, self._position_params()), method=method)
        if not pieces:
            self._info("No hover information.")
            return
        for piece in pieces:
            self.stdout.write(piece + "\n")

    def signature_help(self) -> None:
        method = "textDocument/signatureHelp"
        help_ = as_signature_help(self.session.call(method, self._position_params()), method=method)
        if help_ is None or not help_.signatures:
            self._info("No signature help.")
            return
        for signature in help_.signatures:
            self.stdout.write(signature.label + "\n")
            doc = documentation_text(signature.documentation)
            if doc:
                self.stdout.write(doc + "\n")

    def document_symbol(self) -> None:
        method = "textDocument/documentSymbol"
        symbols = as_symbols(
            self.session.call(method, {"textDocument": self._document()}), method=method
        )
        if not symbols:
            self._info("No symbols found.")
            return
        print_document_symbols(self.stdout, self.uri, symbols)

    def diagnostics(self) -> None:
        found = self.diagnostics_source(self.uri) if self.diagnostics_source else []
        if not found:
            self._info("No diagnostics.")
            return
        print_diagnostics(self.stdout, self.uri, found)

    # Completion.

    def _selection(self, items: Sequence[CompletionItem]) -> str:
        # The typed fragment is read once, at the first readable edit range.
        for item in items:
            edit = primary_edit(item)
            if edit is None:
                continue
            try:
                q0, q1 = range_to_offsets(self.window.body(), edit.range)
                return self.window.read_range(q0, q1)
            except LspClientError as exc:
                logger.debug("skipping %r for the selection: %s", item.label, exc)
        return ""

    def completion(self, edit: bool = False) -> None:
        method = "textDocument/completion"
        items = as_completion_items(
            self.session.call(method, self._position_params()), method=method
        )
        if not items:
            self._info("no completion")
            return
        if edit and len(items) == 1:
            only = items[0]
            primary = primary_edit(only)
            if primary is not None:
                apply_window_edits(self.window, [*(only.additional_text_edits or []), primary])
                return
            logger.debug("single completion has no edit; listing instead")
        print_completions(self.stdout, filter_completions(items, self._selection(items)))

    # Edits.

    def rename(self, new_name: str) -> None:
        params = self._position_params()
        params["newName"] = new_name
        result = self.session.call("textDocument/rename", params)
        if result is None:
            self._info("No rename edits.")
            return
        apply_workspace_edit(self.editor, result)

    def format(self) -> None:
        method = "textDocument/formatting"
        result = self.session.call(
            method,
            {"textDocument": self._document(), "options": self.formatting.to_json()},
        )
        edits = as_text_edits(result, method=method)
        if edits:
            apply_window_edits(self.window, edits)

    def _run_code_action(self, action: JSONValue) -> bool:
        if not isinstance(action, dict):
            return False
        applied = False
        edit = action.get("edit")
        if edit is not None:
            apply_workspace_edit(self.editor, edit)
            applied = True
        command = action.get("command")
        if isinstance(command, dict):
            command_name = command.get("command")
            arguments = command.get("arguments")
        else:
            command_name = command
            arguments = action.get("arguments")
        if isinstance(command_name, str):
            self.session.call(
                "workspace/executeCommand",
                {"command": command_name, "arguments": arguments or []},
            )
            applied = True
        return applied

    def organize_imports_and_format(self) -> None:
        result = self.session.call(
            "textDocument/codeAction",
            {
                "textDocument": self._document(),
                "range": self._whole_document(),
                "context": {"diagnostics": [], "only": [ORGANIZE_IMPORTS]},
            },
        )
        actions = result if isinstance(result, list) else []
        changed = False
        for action in actions:
            changed = self._run_code_action(action) or changed
        if changed:
            self.did_change()
        self.format()
