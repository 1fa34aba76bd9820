"""JSON-RPC session over one duplex stream.

A session owns a single reader thread. Responses are correlated to pending
calls by id; server-initiated requests and notifications are handed to the
registered handler inline, in arrival order, on that same thread.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Protocol

from lspbridge.exceptions import (
    CallTimeout,
    ConnectionTerminated,
    FramingError,
    MalformedMessage,
    MethodNotFound,
    ServerResponseError,
)
from lspbridge.invariants import never
from lspbridge.json_types import JSONValue
from lspbridge.jsonrpc import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    InboundNotification,
    InboundRequest,
    Message,
    Response,
    classify,
    decode_message,
    error_payload,
    notification_payload,
    read_frame,
    request_payload,
    result_payload,
    write_message,
)
from lspbridge.transport import Stream

logger = logging.getLogger(__name__)
rpc_logger = logging.getLogger("lspbridge.rpc")

_HANDSHAKE_METHODS = frozenset({"initialize", "initialized"})


class SessionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class MessageHandler(Protocol):
    def handle_notification(self, method: str, params: JSONValue) -> None: ...

    def handle_request(self, method: str, params: JSONValue) -> JSONValue: ...


class NullHandler:
    def handle_notification(self, method: str, params: JSONValue) -> None:
        logger.debug("ignoring notification %s", method)

    def handle_request(self, method: str, params: JSONValue) -> JSONValue:
        raise MethodNotFound(method)


def _normalize_id(raw_id: int | str) -> int | str:
    if isinstance(raw_id, str) and raw_id.isdigit():
        return int(raw_id)
    return raw_id


class Session:
    def __init__(
        self,
        stream: Stream,
        handler: MessageHandler | None = None,
        *,
        default_timeout: float | None = None,
    ) -> None:
        self._stream = stream
        self.default_timeout = default_timeout
        self._handler: MessageHandler = handler or NullHandler()
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._next_id = 1
        self._pending: dict[int, Future[Response]] = {}
        self._state = SessionState.UNINITIALIZED
        self._closed = threading.Event()
        self._reader: threading.Thread | None = None
        self.capabilities: dict[str, JSONValue] = {}

    @classmethod
    def open(
        cls,
        stream: Stream,
        handler: MessageHandler | None = None,
        *,
        default_timeout: float | None = None,
    ) -> Session:
        session = cls(stream, handler, default_timeout=default_timeout)
        session._start()
        return session

    def _start(self) -> None:
        self._reader = threading.Thread(
            target=self._receive_loop, name="lsp-receive", daemon=True
        )
        self._reader.start()

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def begin_handshake(self) -> None:
        with self._lock:
            if self._state is not SessionState.UNINITIALIZED:
                never("initialize issued on a negotiated session", state=self._state.value)
            self._state = SessionState.INITIALIZING

    def complete_handshake(self, capabilities: dict[str, JSONValue]) -> None:
        with self._lock:
            if self._state is not SessionState.INITIALIZING:
                never("handshake completed out of order", state=self._state.value)
            self.capabilities = dict(capabilities)
            self._state = SessionState.READY

    def _check_sendable(self, method: str) -> None:
        # Caller holds self._lock.
        state = self._state
        if state is SessionState.CLOSED:
            raise ConnectionTerminated("session closed")
        if state is SessionState.READY:
            if method in _HANDSHAKE_METHODS:
                never("capabilities cannot be renegotiated", method=method)
            return
        if state is SessionState.INITIALIZING and method in _HANDSHAKE_METHODS:
            return
        never("request issued before initialization completed", method=method, state=state.value)

    def call(
        self,
        method: str,
        params: JSONValue = None,
        *,
        timeout: float | None = None,
    ) -> JSONValue:
        if timeout is None:
            timeout = self.default_timeout
        future: Future[Response] = Future()
        with self._lock:
            self._check_sendable(method)
            request_id = self._next_id
            self._next_id += 1
            self._pending[request_id] = future
        try:
            self._send(request_payload(request_id, method, params))
        except (OSError, ValueError) as exc:
            self._forget(request_id)
            self._terminate(exc)
            raise ConnectionTerminated(f"connection terminated: {exc}") from exc
        except BaseException:
            self._forget(request_id)
            raise
        try:
            response = future.result(timeout=timeout)
        except FutureTimeout:
            # The server is not told to stop working on the request.
            self._forget(request_id)
            raise CallTimeout(method, float(timeout or 0)) from None
        if response.error is not None:
            error = response.error
            raise ServerResponseError(
                method,
                int(error.get("code", 0) or 0),
                str(error.get("message", "")),
                error.get("data"),
            )
        return response.result

    def notify(self, method: str, params: JSONValue = None) -> None:
        with self._lock:
            self._check_sendable(method)
        try:
            self._send(notification_payload(method, params))
        except (OSError, ValueError) as exc:
            self._terminate(exc)
            raise ConnectionTerminated(f"connection terminated: {exc}") from exc

    def close(self) -> None:
        self._terminate(None)
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=2.0)

    def wait_closed(self, timeout: float | None = None) -> bool:
        return self._closed.wait(timeout)

    def _forget(self, request_id: int) -> None:
        with self._lock:
            self._pending.pop(request_id, None)

    def _send(self, payload: dict[str, JSONValue]) -> None:
        with self._write_lock:
            if rpc_logger.isEnabledFor(logging.DEBUG):
                rpc_logger.debug("--> %s", payload)
            write_message(self._stream.writer, payload)

    def _terminate(self, cause: BaseException | None) -> None:
        with self._lock:
            already_closed = self._state is SessionState.CLOSED
            self._state = SessionState.CLOSED
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            if cause is None:
                error = ConnectionTerminated("session closed")
            else:
                error = ConnectionTerminated(f"connection terminated: {cause}")
                error.__cause__ = cause
            future.set_exception(error)
        if already_closed:
            return
        if cause is not None:
            # EOF after exit is normal; it only matters to waiting callers.
            level = logging.ERROR if pending else logging.DEBUG
            logger.log(level, "connection terminated: %s", cause)
        try:
            self._stream.close()
        finally:
            self._closed.set()

    def _receive_loop(self) -> None:
        while True:
            try:
                body = read_frame(self._stream.reader)
            except (FramingError, OSError, ValueError) as exc:
                self._terminate(exc)
                return
            if body is None:
                self._terminate(EOFError("server closed the connection"))
                return
            if rpc_logger.isEnabledFor(logging.DEBUG):
                rpc_logger.debug("<-- %s", body.decode("utf-8", errors="replace"))
            try:
                message = classify(decode_message(body))
            except MalformedMessage as exc:
                logger.warning("dropping malformed message: %s", exc)
                continue
            self._dispatch(message)

    def _dispatch(self, message: Message) -> None:
        if isinstance(message, Response):
            request_id = _normalize_id(message.id)
            with self._lock:
                future = self._pending.pop(request_id, None)
            if future is None:
                logger.debug("dropping response for unknown id %r", message.id)
                return
            future.set_result(message)
            return
        if isinstance(message, InboundRequest):
            self._answer(message)
            return
        self._deliver(message)

    def _deliver(self, notification: InboundNotification) -> None:
        try:
            self._handler.handle_notification(notification.method, notification.params)
        except Exception:
            logger.exception("notification handler failed for %s", notification.method)

    def _answer(self, request: InboundRequest) -> None:
        try:
            result = self._handler.handle_request(request.method, request.params)
        except MethodNotFound as exc:
            payload = error_payload(request.id, METHOD_NOT_FOUND, str(exc))
        except Exception as exc:
            logger.exception("request handler failed for %s", request.method)
            payload = error_payload(request.id, INTERNAL_ERROR, str(exc))
        else:
            payload = result_payload(request.id, result)
        try:
            self._send(payload)
        except (OSError, ValueError) as exc:
            self._terminate(exc)
