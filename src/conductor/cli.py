from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from conductor.config import ConductorConfig, load_config, save_config
from conductor.errors import AppError, AppResult, ConfigError
from conductor.gateway import ProcessGateway, RemoteCommandGateway, TimeoutGateway
from conductor.helpers import CaptureHelper, HelperError, RecognitionHelper
from conductor.state import CHANNELS, EventSequencer, UiStateStore
from conductor.views import ROUTES, AppShell, view_to_dict
from conductor.workflow import CoreFlowRequest

EventHook = Callable[[dict[str, Any]], None]


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _load(repo_root: Path, config_value: str, apply_env: bool = True) -> ConductorConfig:
    try:
        return load_config(_resolve_config_path(repo_root, config_value), apply_env=apply_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _event_printer(verbose: bool) -> EventHook | None:
    if not verbose:
        return None

    def _print(event: dict[str, Any]) -> None:
        payload = dict(event)
        payload["at"] = datetime.now(UTC).replace(microsecond=0).isoformat()
        click.echo(json.dumps(payload, ensure_ascii=False), err=True)

    return _print


def _build_gateway(
    config: ConductorConfig, repo_root: Path, event_hook: EventHook | None = None
) -> RemoteCommandGateway:
    process = ProcessGateway(
        binary=config.gateway.binary,
        working_directory=repo_root,
        event_hook=event_hook,
    )
    return TimeoutGateway(
        process,
        timeout_seconds=config.gateway.timeout_seconds,
        event_hook=event_hook,
    )


def _build_shell(config: ConductorConfig, repo_root: Path, verbose: bool) -> AppShell:
    event_hook = _event_printer(verbose)
    gateway = _build_gateway(config, repo_root, event_hook)
    store = UiStateStore(initial_route=config.ui.initial_route)
    return AppShell(gateway, store=store, event_hook=event_hook)


def _format_error(error: AppError) -> str:
    message = f"{error.code}: {error.message}"
    if error.details:
        message += f"\n  details: {error.details}"
    if error.action_hint:
        message += f"\n  hint: {error.action_hint}"
    return message


def _unwrap(result: AppResult) -> Any:
    if not result.ok:
        assert result.error is not None
        raise click.ClickException(_format_error(result.error))
    return result.value


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@click.group()
def cli() -> None:
    """Conductor CLI."""


@cli.command("init")
@click.option("--gateway-binary", default=None)
@click.option("--config", "config_value", default="conductor.toml", show_default=True)
def init_command(gateway_binary: str | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    config = _load(repo_root, config_value, apply_env=False)
    if gateway_binary:
        config.gateway.binary = gateway_binary
    save_config(config_path, config)

    click.echo(f"Initialized Conductor in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Gateway: {config.gateway.binary}")


@cli.command("run")
@click.option("--label", default=None, help="Session label; defaults to a timestamped one.")
@click.option("--output-dir", default=None)
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default="conductor.toml", show_default=True)
def run_command(
    label: str | None, output_dir: str | None, verbose: bool, config_value: str
) -> None:
    repo_root = Path.cwd().resolve()
    config = _load(repo_root, config_value)
    shell = _build_shell(config, repo_root, verbose)
    session_label = label or (
        f"{config.workflow.session_label_prefix}-{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}"
    )
    request = CoreFlowRequest(
        session_label=session_label,
        output_dir=output_dir or config.workflow.output_dir,
        on_stage=lambda stage: click.echo(f"[{stage}]"),
    )
    result = asyncio.run(shell.run_capture_to_tutorial_flow(request))
    flow = _unwrap(result)

    click.echo(f"Session: {flow.session_id}")
    click.echo(f"Export: {flow.output_path}")
    click.echo(f"Bundle hash: {flow.bundle_hash}")
    click.echo(f"Verified: {'yes' if flow.verify_valid else 'no'}")


@cli.command("edit")
@click.argument("session_id")
@click.argument("base_seq", type=int)
@click.argument("op_json")
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default="conductor.toml", show_default=True)
def edit_command(
    session_id: str, base_seq: int, op_json: str, verbose: bool, config_value: str
) -> None:
    try:
        op = json.loads(op_json)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"OP_JSON is not valid JSON: {exc}") from exc
    if not isinstance(op, dict):
        raise click.ClickException("OP_JSON must be a JSON object")

    repo_root = Path.cwd().resolve()
    shell = _build_shell(_load(repo_root, config_value), repo_root, verbose)
    shell.store.set_active_session(session_id)
    result = asyncio.run(shell.apply_step_edit(session_id, base_seq, op))
    _echo_json(_unwrap(result))


@cli.command("view")
@click.argument("route", type=click.Choice(list(ROUTES)))
@click.option("--session", "session_id", default=None)
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default="conductor.toml", show_default=True)
def view_command(route: str, session_id: str | None, verbose: bool, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    shell = _build_shell(_load(repo_root, config_value), repo_root, verbose)
    if session_id:
        shell.store.set_active_session(session_id)
    view = asyncio.run(shell.load_route(route))
    _echo_json({"route": route, "view": view_to_dict(view)})


@cli.command("ingest")
@click.argument("source", type=click.File("r"), default="-")
def ingest_command(source: Any) -> None:
    store = UiStateStore()
    sequencer = EventSequencer(store)
    accepted = 0
    for line in source:
        if sequencer.ingest_line(line):
            accepted += 1

    telemetry = {channel: asdict(sequencer.telemetry(channel)) for channel in CHANNELS}
    unknown = sequencer.telemetry("unknown")
    if unknown.malformed_count:
        telemetry["unknown"] = asdict(unknown)
    _echo_json(
        {
            "accepted": accepted,
            "telemetry": telemetry,
            "state": store.get_state().to_dict(),
        }
    )


@cli.command("capture")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default="conductor.toml", show_default=True)
def capture_command(output: Path, verbose: bool, config_value: str) -> None:
    config = _load(Path.cwd().resolve(), config_value)
    helper = CaptureHelper(
        binary=config.helpers.capture_binary,
        timeout_seconds=config.helpers.timeout_seconds,
        event_hook=_event_printer(verbose),
    )
    try:
        frame = asyncio.run(helper.capture(output))
    except HelperError as exc:
        raise click.ClickException(_format_error(exc.to_app_error())) from exc
    click.echo(f"Captured {len(frame.png_bytes)} bytes to {frame.path}")


@cli.command("recognize")
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default="conductor.toml", show_default=True)
def recognize_command(image: Path, verbose: bool, config_value: str) -> None:
    config = _load(Path.cwd().resolve(), config_value)
    helper = RecognitionHelper(
        binary=config.helpers.recognition_binary,
        timeout_seconds=config.helpers.timeout_seconds,
        event_hook=_event_printer(verbose),
    )
    try:
        records = asyncio.run(helper.recognize_bytes(image.read_bytes()))
    except HelperError as exc:
        raise click.ClickException(_format_error(exc.to_app_error())) from exc
    _echo_json([asdict(record) for record in records])
