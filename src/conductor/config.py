from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from conductor.errors import ConfigError

GATEWAY_BINARY_ENV = "CONDUCTOR_GATEWAY_BINARY"


@dataclass(slots=True)
class GatewayConfig:
    binary: str = "conductor-backend"
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class HelpersConfig:
    capture_binary: str = "conductor-capture"
    recognition_binary: str = "conductor-recognize"
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class WorkflowConfig:
    output_dir: str = "exports"
    session_label_prefix: str = "handoff"


@dataclass(slots=True)
class UiConfig:
    initial_route: str = "permissions"


@dataclass(slots=True)
class ConductorConfig:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    helpers: HelpersConfig = field(default_factory=HelpersConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    ui: UiConfig = field(default_factory=UiConfig)

    @classmethod
    def default(cls) -> ConductorConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> ConductorConfig:
        try:
            return cls(
                gateway=GatewayConfig(**data.get("gateway", {})),
                helpers=HelpersConfig(**data.get("helpers", {})),
                workflow=WorkflowConfig(**data.get("workflow", {})),
                ui=UiConfig(**data.get("ui", {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            section: {
                item.name: getattr(getattr(self, section), item.name)
                for item in fields(getattr(self, section))
            }
            for section in SECTION_ORDER
        }


SECTION_ORDER = ("gateway", "helpers", "workflow", "ui")


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: ConductorConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in SECTION_ORDER:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path, *, apply_env: bool = True) -> ConductorConfig:
    if path.exists():
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Could not parse {path}: {exc}") from exc
        config = ConductorConfig.from_dict(data)
    else:
        config = ConductorConfig.default()
    override = os.environ.get(GATEWAY_BINARY_ENV, "").strip() if apply_env else ""
    if override:
        config.gateway.binary = override
    return config


def save_config(path: Path, config: ConductorConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
