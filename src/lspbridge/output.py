"""Printable renderings of locations, completions, symbols and diagnostics."""

from __future__ import annotations

import json
from typing import Callable, Sequence, TextIO

from lsprotocol.types import (
    CompletionItem,
    Diagnostic,
    DiagnosticSeverity,
    DocumentSymbol,
    InsertTextFormat,
    Location,
    SymbolInformation,
)

from lspbridge.edits import edit_command
from lspbridge.protocol import primary_edit
from lspbridge.text import location_link


def _enum_name(value: object) -> str:
    name = getattr(value, "name", None)
    if isinstance(name, str):
        return name
    return "" if value is None else str(value)


def completion_filter_key(item: CompletionItem) -> str:
    """Text a typed prefix is matched against.

    Snippet replacement text carries placeholder syntax, so snippets are
    matched on ``filterText`` instead.
    """
    if item.insert_text_format == InsertTextFormat.Snippet and item.filter_text:
        return item.filter_text
    edit = primary_edit(item)
    if edit is not None:
        return edit.new_text
    return item.insert_text or item.label


def filter_completions(
    items: Sequence[CompletionItem], selection: str
) -> list[CompletionItem]:
    prefix = selection.casefold()
    return [
        item
        for item in items
        if completion_filter_key(item).casefold().startswith(prefix)
    ]


def format_completion(item: CompletionItem) -> list[str]:
    lines = [f"{json.dumps(item.label)}, type: {_enum_name(item.kind)}"]
    for edit in item.additional_text_edits or []:
        lines.append(edit_command(edit))
    edit = primary_edit(item)
    if edit is not None:
        lines.append(edit_command(edit))
    return lines


def print_completions(out: TextIO, items: Sequence[CompletionItem]) -> None:
    for item in items:
        for line in format_completion(item):
            out.write(line + "\n")


def print_locations(out: TextIO, locations: Sequence[Location]) -> None:
    for location in locations:
        out.write(location_link(location) + "\n")


def walk_document_symbols(
    symbols: Sequence[DocumentSymbol],
    visit: Callable[[DocumentSymbol, int], None],
    depth: int = 0,
) -> None:
    for symbol in symbols:
        visit(symbol, depth)
        if symbol.children:
            walk_document_symbols(symbol.children, visit, depth + 1)


def print_document_symbols(
    out: TextIO,
    uri: str,
    symbols: Sequence[DocumentSymbol] | Sequence[SymbolInformation],
) -> None:
    def _emit(name: str, kind: object, detail: str, location: Location, depth: int) -> None:
        indent = " " * depth
        out.write(f"{indent}{_enum_name(kind)} {name} {detail}\n")
        out.write(f"{indent} {location_link(location)}\n")

    def _visit(symbol: DocumentSymbol, depth: int) -> None:
        location = Location(uri=uri, range=symbol.selection_range)
        _emit(symbol.name, symbol.kind, symbol.detail or "", location, depth)

    flat = [symbol for symbol in symbols if isinstance(symbol, SymbolInformation)]
    if flat:
        for info in flat:
            _emit(info.name, info.kind, info.container_name or "", info.location, 0)
        return
    walk_document_symbols(list(symbols), _visit)


def severity_name(severity: DiagnosticSeverity | None) -> str:
    if severity is None:
        return "Error"
    return _enum_name(severity)


def format_diagnostic(uri: str, diagnostic: Diagnostic) -> str:
    link = location_link(Location(uri=uri, range=diagnostic.range))
    return f"{link}: {severity_name(diagnostic.severity)}: {diagnostic.message}"


def print_diagnostics(out: TextIO, uri: str, diagnostics: Sequence[Diagnostic]) -> None:
    for diagnostic in diagnostics:
        out.write(format_diagnostic(uri, diagnostic) + "\n")
