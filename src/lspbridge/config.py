from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import ValidationError

from lspbridge.exceptions import ConfigError
from lspbridge.schema import BridgeConfig

DEFAULT_CONFIG_NAME = "lspbridge.toml"


def _load_toml(path: Path, *, required: bool) -> dict[str, object]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        if required:
            raise ConfigError(f"config file not found: {path}") from None
        return {}
    except OSError as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> BridgeConfig:
    """Read ``lspbridge.toml``.

    An explicit ``config_path`` must exist; the default file under ``root`` (or
    the working directory) is optional and yields defaults when absent.
    """
    required = config_path is not None
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    data = _load_toml(config_path, required=required)
    try:
        return BridgeConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc
