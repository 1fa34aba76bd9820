from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from lspbridge.exceptions import ConfigError
from lspbridge.runtime.env_policy import parse_duration_seconds


class ServerSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    command: List[str] = []
    address: Optional[str] = None
    options: Dict[str, Any] = {}


class ClientSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    root_directory: Optional[str] = None
    workspace_folders: List[str] = []
    hide_diagnostics: bool = False
    rpc_trace: bool = False
    verbose: bool = False
    timeout: str = "30s"
    notification_budget: str = "2s"

    @field_validator("timeout", "notification_budget")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        try:
            parse_duration_seconds(value)
        except ConfigError as exc:
            raise ValueError(str(exc)) from exc
        return value

    def timeout_seconds(self) -> float:
        return parse_duration_seconds(self.timeout, field_name="timeout")

    def notification_budget_seconds(self) -> float:
        return parse_duration_seconds(self.notification_budget, field_name="notification_budget")


class FormattingSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tab_size: int = 8
    insert_spaces: bool = False


class BridgeConfig(BaseModel):
    server: ServerSection = ServerSection()
    client: ClientSection = ClientSection()
    formatting: FormattingSection = FormattingSection()
