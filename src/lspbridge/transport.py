"""Opening the duplex byte stream a session runs on."""

from __future__ import annotations

import logging
import os
import socket
import subprocess
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Sequence

from lspbridge.exceptions import TransportError

logger = logging.getLogger(__name__)

_PROCESS_EXIT_TIMEOUT = 2.0


@dataclass
class Stream:
    reader: BinaryIO
    writer: BinaryIO
    closer: Callable[[], None] | None = None
    # A spawned server belongs to this process and must be shut down on close;
    # a dialed peer (usually a multiplexing proxy) is only disconnected.
    owns_server: bool = False
    _closed: bool = field(default=False, init=False, repr=False)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.closer is not None:
            self.closer()
            return
        for handle in (self.writer, self.reader):
            try:
                handle.close()
            except OSError:
                logger.debug("error closing stream handle", exc_info=True)


def socket_stream(sock: socket.socket) -> Stream:
    reader = sock.makefile("rb")
    writer = sock.makefile("wb")

    def _close() -> None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for handle in (writer, reader):
            try:
                handle.close()
            except OSError:
                logger.debug("error closing socket file", exc_info=True)
        sock.close()

    return Stream(reader=reader, writer=writer, closer=_close)


def parse_address(address: str) -> tuple[int, str | tuple[str, int]]:
    text = address.strip()
    if not text:
        raise TransportError("empty server address")
    if text.startswith("unix:"):
        return socket.AF_UNIX, text[len("unix:"):]
    if text.startswith("/") or text.startswith("."):
        return socket.AF_UNIX, text
    if text.startswith("tcp:"):
        text = text[len("tcp:"):]
    host, sep, port_text = text.rpartition(":")
    if not sep or not port_text.isdigit():
        raise TransportError(f"invalid server address {address!r}")
    return socket.AF_INET, (host or "localhost", int(port_text))


def dial(address: str, *, timeout: float | None = 10.0) -> Stream:
    family, target = parse_address(address)
    try:
        if family == socket.AF_UNIX:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(timeout)
            sock.connect(target)
        else:
            sock = socket.create_connection(target, timeout=timeout)
    except OSError as exc:
        raise TransportError(f"failed to connect to {address}: {exc}") from exc
    sock.settimeout(None)
    logger.debug("connected to %s", address)
    return socket_stream(sock)


def spawn(
    argv: Sequence[str],
    *,
    cwd: str | os.PathLike[str] | None = None,
    process_factory: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> Stream:
    if not argv:
        raise TransportError("empty server command")
    try:
        proc = process_factory(
            list(argv),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            cwd=cwd,
        )
    except OSError as exc:
        raise TransportError(f"failed to start {argv[0]}: {exc}") from exc
    assert proc.stdin is not None
    assert proc.stdout is not None
    logger.debug("started %s (pid %s)", " ".join(argv), proc.pid)

    def _close() -> None:
        try:
            proc.stdin.close()
        except OSError:
            pass
        try:
            proc.wait(timeout=_PROCESS_EXIT_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit; killing it", argv[0])
            proc.kill()
            proc.wait(timeout=_PROCESS_EXIT_TIMEOUT)
        proc.stdout.close()

    return Stream(reader=proc.stdout, writer=proc.stdin, closer=_close, owns_server=True)
