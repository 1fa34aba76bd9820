"""Error taxonomy for the LSP client."""

from __future__ import annotations


class NeverRaise(RuntimeError):
    """Sentinel exception for code paths that must be unreachable.

    Raised when a caller violates a protocol ordering rule (for example issuing
    a request before the handshake finished). It signals a programming error,
    not a condition the command should recover from.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})


class NeverThrown(NeverRaise):
    """Alias for NeverRaise used by the explicit never() marker."""


class LspClientError(RuntimeError):
    pass


class TransportError(LspClientError):
    pass


class ConnectionTerminated(TransportError):
    def __init__(self, message: str = "connection terminated") -> None:
        super().__init__(message)


class HandshakeError(TransportError):
    pass


class CallTimeout(TransportError):
    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"{method}: no response within {timeout:g}s")
        self.method = method
        self.timeout = timeout


class FramingError(TransportError):
    """The byte stream no longer carries valid frames."""


class MalformedMessage(LspClientError):
    """A frame arrived intact but its payload is not a JSON-RPC object."""


class ServerResponseError(LspClientError):
    def __init__(self, method: str, code: int, message: str, data: object = None) -> None:
        super().__init__(f"bad server response: {method}: {message} (code {code})")
        self.method = method
        self.code = code
        self.server_message = message
        self.data = data


class InvalidResponse(LspClientError):
    """The server answered, but not with a value of the protocol's shape."""

    def __init__(self, method: str, detail: str) -> None:
        super().__init__(f"bad server response: {method}: {detail}")
        self.method = method


class MethodNotFound(LspClientError):
    def __init__(self, method: str) -> None:
        super().__init__(f"method not supported: {method}")
        self.method = method


class EditApplicationError(LspClientError):
    def __init__(self, failures: list[str]) -> None:
        super().__init__("failed to apply edits: " + "; ".join(failures))
        self.failures = list(failures)


class EditorError(LspClientError):
    pass


class PlumbError(LspClientError):
    pass


class ConfigError(LspClientError):
    pass
