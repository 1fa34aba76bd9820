"""Sending "open this location" messages through the plumber."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Callable

from lsprotocol.types import Location

from lspbridge.exceptions import PlumbError
from lspbridge.text import position_link, uri_to_filename

logger = logging.getLogger(__name__)

PLUMB_SOURCE = "lspbridge"
PLUMB_DESTINATION = "edit"


@dataclass(frozen=True)
class PlumbMessage:
    src: str
    dst: str
    wdir: str
    type: str
    data: str

    def argv(self, program: str = "plumb") -> list[str]:
        return [
            program,
            "-s", self.src,
            "-d", self.dst,
            "-w", self.wdir,
            "-t", self.type,
            self.data,
        ]


class Plumber:
    def __init__(
        self,
        *,
        program: str = "plumb",
        run_fn: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.program = program
        self._run = run_fn

    def send(self, message: PlumbMessage) -> None:
        argv = message.argv(self.program)
        logger.debug("plumbing %s", message.data)
        try:
            proc = self._run(argv, check=False, capture_output=True, text=True)
        except OSError as exc:
            raise PlumbError(f"failed to run {self.program}: {exc}") from exc
        if proc.returncode != 0:
            detail = (proc.stderr or "").strip() or f"exit status {proc.returncode}"
            raise PlumbError(f"plumb failed: {detail}")


def location_message(location: Location) -> PlumbMessage:
    return PlumbMessage(
        src=PLUMB_SOURCE,
        dst=PLUMB_DESTINATION,
        wdir="/",
        type="text",
        data=position_link(uri_to_filename(location.uri), location.range.start),
    )


def plumb_location(plumber: Plumber, location: Location) -> None:
    plumber.send(location_message(location))
