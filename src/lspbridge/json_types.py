"""Raw JSON values exchanged with the language server.

Payloads stay in these shapes until ``protocol`` structures them into
lsprotocol types.
"""

from __future__ import annotations

from typing import TypeAlias

JSONValue: TypeAlias = (
    str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]
)
JSONObject: TypeAlias = dict[str, JSONValue]
