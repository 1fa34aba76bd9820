"""Marker for code paths that protocol ordering makes unreachable."""

from __future__ import annotations

from typing import NoReturn

from lspbridge.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Raise ``NeverThrown`` with ``env`` attached for the error report."""
    raise NeverThrown(reason or "never() marker reached", env=env)
