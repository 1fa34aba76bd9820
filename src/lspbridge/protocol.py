"""Structuring of wire results into lsprotocol values.

Server results arrive as raw JSON. Several of them are unions on the wire
(a single Location, a list of Locations or LocationLinks, a CompletionList or
a bare list, hierarchical or flat symbols); these helpers pick the variant and
let the lsprotocol converter build the typed value.
"""

from __future__ import annotations

from typing import TypeVar

from cattrs.errors import BaseValidationError
from lsprotocol.converters import get_converter
from lsprotocol.types import (
    CompletionItem,
    DocumentSymbol,
    InsertReplaceEdit,
    Location,
    LocationLink,
    MarkupContent,
    PublishDiagnosticsParams,
    SignatureHelp,
    SymbolInformation,
    TextEdit,
)

from lspbridge.exceptions import InvalidResponse
from lspbridge.json_types import JSONValue

T = TypeVar("T")

converter = get_converter()


def structure(value: JSONValue, cls: type[T], *, method: str) -> T:
    try:
        return converter.structure(value, cls)
    except (BaseValidationError, KeyError, TypeError, ValueError) as exc:
        raise InvalidResponse(method, f"cannot read {cls.__name__}: {exc}") from exc


def _as_list(result: JSONValue, method: str) -> list[JSONValue]:
    if result is None:
        return []
    if isinstance(result, list):
        return result
    raise InvalidResponse(method, f"expected a list, got {type(result).__name__}")


def as_locations(result: JSONValue, *, method: str) -> list[Location]:
    if isinstance(result, dict):
        result = [result]
    locations: list[Location] = []
    for item in _as_list(result, method):
        if isinstance(item, dict) and "targetUri" in item:
            link = structure(item, LocationLink, method=method)
            locations.append(Location(uri=link.target_uri, range=link.target_selection_range))
        else:
            locations.append(structure(item, Location, method=method))
    return locations


def as_text_edits(result: JSONValue, *, method: str) -> list[TextEdit]:
    return [structure(item, TextEdit, method=method) for item in _as_list(result, method)]


def as_completion_items(result: JSONValue, *, method: str) -> list[CompletionItem]:
    if isinstance(result, dict):
        result = result.get("items")
    return [structure(item, CompletionItem, method=method) for item in _as_list(result, method)]


def primary_edit(item: CompletionItem) -> TextEdit | None:
    edit = item.text_edit
    if edit is None:
        return None
    if isinstance(edit, InsertReplaceEdit):
        return TextEdit(range=edit.insert, new_text=edit.new_text)
    return edit


def as_symbols(
    result: JSONValue, *, method: str
) -> list[DocumentSymbol] | list[SymbolInformation]:
    items = _as_list(result, method)
    if items and isinstance(items[0], dict) and "location" in items[0]:
        return [structure(item, SymbolInformation, method=method) for item in items]
    return [structure(item, DocumentSymbol, method=method) for item in items]


def as_signature_help(result: JSONValue, *, method: str) -> SignatureHelp | None:
    if result is None:
        return None
    return structure(result, SignatureHelp, method=method)


def as_diagnostics_params(params: JSONValue) -> PublishDiagnosticsParams:
    return structure(params, PublishDiagnosticsParams, method="textDocument/publishDiagnostics")


def documentation_text(doc: str | MarkupContent | None) -> str:
    if doc is None:
        return ""
    if isinstance(doc, MarkupContent):
        return doc.value
    return str(doc)


def _marked_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return str(value.get("value", ""))
    return ""


def hover_contents(result: JSONValue, *, method: str = "textDocument/hover") -> list[str]:
    """Return the printable pieces of a Hover, in order."""
    if result is None:
        return []
    if not isinstance(result, dict):
        raise InvalidResponse(method, f"expected a Hover, got {type(result).__name__}")
    contents = result.get("contents")
    if isinstance(contents, list):
        pieces = [_marked_text(item) for item in contents]
    else:
        pieces = [_marked_text(contents)]
    return [piece for piece in pieces if piece]
