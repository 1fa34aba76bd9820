"""Re-running a command whenever the window's text or cursor changes."""

from __future__ import annotations

import logging
import time
from typing import Callable, TextIO

from lspbridge.editor import Window
from lspbridge.exceptions import LspClientError, TransportError

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 40


def watch(
    run: Callable[[], None],
    window: Window,
    out: TextIO,
    *,
    interval: float = 0.5,
    max_rounds: int | None = None,
    refresh: Callable[[], object] | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> int:
    """Poll ``window`` and call ``run`` once per observed change.

    The first poll always runs. A failing round is reported on ``out`` and
    watching continues; a broken connection ends the watch. Returns the number
    of rounds run.
    """
    last: tuple[str, tuple[int, int]] | None = None
    rounds = 0
    while max_rounds is None or rounds < max_rounds:
        if refresh is not None:
            refresh()
        state = (window.body(), window.cursor())
        if state == last:
            sleep_fn(interval)
            continue
        last = state
        if rounds:
            out.write(SEPARATOR + "\n")
        rounds += 1
        try:
            run()
        except TransportError:
            raise
        except LspClientError as exc:
            logger.debug("watch round %d failed", rounds, exc_info=True)
            out.write(f"{exc}\n")
        out.flush()
    return rounds
