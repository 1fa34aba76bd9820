from __future__ import annotations

import os
import re
from decimal import ROUND_CEILING, Decimal, InvalidOperation

from lspbridge.exceptions import ConfigError

TIMEOUT_ENV = "LSPBRIDGE_TIMEOUT"
ADDRESS_ENV = "LSPBRIDGE_ADDRESS"
FILE_ENV = "LSPBRIDGE_FILE"
POS_ENV = "LSPBRIDGE_POS"

_DURATION_TOKEN_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ns|us|ms|s|m|h)")
_DURATION_UNIT_NS: dict[str, Decimal] = {
    "ns": Decimal("1"),
    "us": Decimal("1000"),
    "ms": Decimal("1000000"),
    "s": Decimal("1000000000"),
    "m": Decimal("60000000000"),
    "h": Decimal("3600000000000"),
}


def env_text(name: str, *, default: str = "") -> str:
    return os.getenv(name, default).strip()


def parse_duration_to_ns(duration: str, *, field_name: str = "timeout") -> int:
    """Parse ``500ms``, ``30s``, ``1m30s`` style durations into nanoseconds."""
    text = str(duration).strip().lower()
    if not text:
        raise ConfigError(f"invalid {field_name} duration {duration!r}")
    idx = 0
    total_ns = Decimal("0")
    while idx < len(text):
        match = _DURATION_TOKEN_RE.match(text, idx)
        if match is None:
            raise ConfigError(f"invalid {field_name} duration {duration!r}")
        try:
            value = Decimal(match.group("value"))
        except InvalidOperation as exc:
            raise ConfigError(f"invalid {field_name} duration {duration!r}") from exc
        total_ns += value * _DURATION_UNIT_NS[match.group("unit")]
        idx = match.end()
    total_ns_int = int(total_ns.to_integral_value(rounding=ROUND_CEILING))
    if total_ns_int <= 0:
        raise ConfigError(f"invalid {field_name} duration {duration!r}")
    return total_ns_int


def parse_duration_seconds(duration: str, *, field_name: str = "timeout") -> float:
    return parse_duration_to_ns(duration, field_name=field_name) / 1_000_000_000


def timeout_from_env() -> float | None:
    text = env_text(TIMEOUT_ENV)
    if not text:
        return None
    return parse_duration_seconds(text, field_name=TIMEOUT_ENV)
