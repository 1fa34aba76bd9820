"""Content-Length framing and message classification for JSON-RPC 2.0."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import BinaryIO

from lspbridge.exceptions import FramingError, MalformedMessage
from lspbridge.json_types import JSONObject, JSONValue

JSONRPC_VERSION = "2.0"

METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


@dataclass(frozen=True)
class Response:
    id: int | str
    result: JSONValue = None
    error: JSONObject | None = None


@dataclass(frozen=True)
class InboundRequest:
    """Server-to-client request; exactly one response must be written back."""

    id: int | str
    method: str
    params: JSONValue = None


@dataclass(frozen=True)
class InboundNotification:
    method: str
    params: JSONValue = None


Message = Response | InboundRequest | InboundNotification


def encode_message(payload: JSONObject) -> bytes:
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def write_message(writer: BinaryIO, payload: JSONObject) -> None:
    writer.write(encode_message(payload))
    writer.flush()


def _read_exact(reader: BinaryIO, length: int) -> bytes:
    body = bytearray()
    while len(body) < length:
        chunk = reader.read(length - len(body))
        if not chunk:
            raise FramingError("LSP stream closed inside message body")
        body.extend(chunk)
    return bytes(body)


def read_frame(reader: BinaryIO) -> bytes | None:
    """Read one framed payload; None means the peer closed between frames."""
    length: int | None = None
    seen_header = False
    while True:
        line = reader.readline()
        if not line:
            if seen_header:
                raise FramingError("LSP stream closed inside message header")
            return None
        seen_header = True
        if line in (b"\r\n", b"\n"):
            break
        name, sep, value = line.partition(b":")
        if not sep:
            raise FramingError(f"Malformed LSP header line: {line!r}")
        if name.strip().lower() == b"content-length":
            try:
                length = int(value.strip())
            except ValueError as exc:
                raise FramingError(f"Invalid LSP Content-Length: {value!r}") from exc
    if length is None or length < 0:
        raise FramingError("Invalid LSP Content-Length")
    return _read_exact(reader, length)


def decode_message(body: bytes) -> JSONObject:
    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedMessage(f"Invalid LSP message body: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedMessage("Invalid LSP message payload")
    return message


def classify(message: JSONObject) -> Message:
    method = message.get("method")
    has_id = "id" in message and message.get("id") is not None
    if isinstance(method, str):
        if has_id:
            return InboundRequest(
                id=message["id"], method=method, params=message.get("params")
            )
        return InboundNotification(method=method, params=message.get("params"))
    if has_id:
        error = message.get("error")
        if error is not None and not isinstance(error, dict):
            raise MalformedMessage("Invalid LSP error member")
        return Response(id=message["id"], result=message.get("result"), error=error)
    raise MalformedMessage("LSP message is neither a request, notification nor response")


def request_payload(request_id: int, method: str, params: JSONValue) -> JSONObject:
    payload: JSONObject = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return payload


def notification_payload(method: str, params: JSONValue) -> JSONObject:
    payload: JSONObject = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return payload


def result_payload(request_id: int | str, result: JSONValue) -> JSONObject:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_payload(request_id: int | str | None, code: int, message: str) -> JSONObject:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {"code": code, "message": message},
    }
