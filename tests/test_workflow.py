import asyncio
from typing import Any

import pytest

from conductor.errors import AppError, AppResult
from conductor.gateway.base import RemoteCommandGateway
from conductor.state import UiStateStore
from conductor.workflow import STAGES, CoreFlowRequest, CoreFlowResult, WorkflowOrchestrator


class ScriptedGateway(RemoteCommandGateway):
    """Answers each command from a table of successful values, with per-command overrides."""

    def __init__(self, overrides: dict[str, AppResult] | None = None) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.responses: dict[str, AppResult] = {
            "session_create": AppResult.success({"session_id": "s1", "head_seq": 0}),
            "capture_start": AppResult.success({"started": True}),
            "ocr_schedule": AppResult.success({"job_id": "job-ocr"}),
            "steps_generate_candidates": AppResult.success({"job_id": "job-steps"}),
            "tutorial_generate": AppResult.success({"job_id": "job-tutorial"}),
            "tutorial_validate_export": AppResult.success({"allowed": True, "reasons": []}),
            "tutorial_export_pack": AppResult.success(
                {"output_path": "/exports/s1.zip", "bundle_hash": "abc123"}
            ),
            "export_verify_bundle": AppResult.success({"valid": True, "issues": []}),
            "capture_stop": AppResult.success({"stopped": True}),
        }
        self.responses.update(overrides or {})

    async def invoke(self, command: str, request: Any) -> AppResult:
        self.calls.append((command, request))
        return self.responses[command]

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


def _run(gateway: ScriptedGateway, store: UiStateStore | None = None):
    stages: list[str] = []
    events: list[dict[str, Any]] = []
    orchestrator = WorkflowOrchestrator(gateway, store or UiStateStore(), event_hook=events.append)
    request = CoreFlowRequest(session_label="demo", output_dir="/exports", on_stage=stages.append)
    result = asyncio.run(orchestrator.run_capture_to_tutorial_flow(request))
    return result, stages, events


def test_end_to_end_success_reports_every_stage_in_order() -> None:
    gateway = ScriptedGateway()
    store = UiStateStore()

    result, stages, events = _run(gateway, store)

    assert result.ok
    assert isinstance(result.value, CoreFlowResult)
    assert result.value.to_dict() == {
        "session_id": "s1",
        "tutorial_export_ok": True,
        "output_path": "/exports/s1.zip",
        "bundle_hash": "abc123",
        "verify_valid": True,
        "verify_issues": [],
    }
    assert stages == list(STAGES)
    assert stages[-1] == "complete"
    assert gateway.commands == [
        "session_create",
        "capture_start",
        "ocr_schedule",
        "steps_generate_candidates",
        "tutorial_generate",
        "tutorial_validate_export",
        "tutorial_export_pack",
        "export_verify_bundle",
        "capture_stop",
    ]
    assert gateway.calls[0][1] == {"label": "demo", "metadata": {}}
    assert gateway.calls[6][1] == {"session_id": "s1", "output_dir": "/exports"}
    assert gateway.calls[7][1] == {"bundle_path": "/exports/s1.zip"}

    state = store.get_state()
    assert state.active_session_id == "s1"
    assert state.session_head_seq == {"s1": 0}
    assert state.jobs == {
        "job-ocr": "QUEUED",
        "job-steps": "QUEUED",
        "job-tutorial": "QUEUED",
    }
    assert state.last_error_code is None
    assert state.status_message == "Export verified: /exports/s1.zip"
    assert events[-1]["event"] == "flow_complete"


def test_failure_stops_before_any_later_stage() -> None:
    ocr_failure = AppError(code="PROVIDER_SCHEMA_INVALID", message="bad blocks")
    gateway = ScriptedGateway({"ocr_schedule": AppResult.failure(ocr_failure)})
    store = UiStateStore()

    result, stages, events = _run(gateway, store)

    assert not result.ok
    assert result.error == ocr_failure
    assert stages == ["session", "capture", "ocr"]
    assert gateway.commands == ["session_create", "capture_start", "ocr_schedule"]
    assert store.get_state().last_error_code == "PROVIDER_SCHEMA_INVALID"
    failed = [event for event in events if event["event"] == "stage_failed"]
    assert failed == [
        {
            "event": "stage_failed",
            "stage": "ocr",
            "code": "PROVIDER_SCHEMA_INVALID",
            "recoverable": False,
        }
    ]


def test_session_failure_is_returned_unchanged() -> None:
    denied = AppError(
        code="PERMISSION_DENIED",
        message="screen recording not granted",
        recoverable=True,
        action_hint="Grant permission",
    )
    gateway = ScriptedGateway({"session_create": AppResult.failure(denied)})

    result, stages, _ = _run(gateway)

    assert result.error is denied
    assert stages == ["session"]
    assert gateway.commands == ["session_create"]


def test_validate_gate_synthesizes_export_gate_failure() -> None:
    gateway = ScriptedGateway(
        {
            "tutorial_validate_export": AppResult.success(
                {"allowed": False, "reasons": ["a", "b"]}
            )
        }
    )

    result, stages, _ = _run(gateway)

    assert result.error is not None
    assert result.error.code == "EXPORT_GATE_FAILED"
    assert result.error.message == "a; b"
    assert result.error.recoverable is False
    assert result.error.action_hint == "Fix steps or anchors before export"
    assert stages[-1] == "validate"
    assert "tutorial_export_pack" not in gateway.commands


def test_verify_gate_synthesizes_recoverable_failure() -> None:
    gateway = ScriptedGateway(
        {
            "export_verify_bundle": AppResult.success(
                {"valid": False, "issues": ["bad signature"]}
            )
        }
    )
    store = UiStateStore()

    result, stages, _ = _run(gateway, store)

    assert result.error == AppError(
        code="EXPORT_GATE_FAILED",
        message="Export verification failed",
        details="bad signature",
        recoverable=True,
        action_hint="Inspect proof ledger and fix policy issues",
    )
    assert stages[-1] == "verify"
    assert "capture_stop" not in gateway.commands
    assert store.get_state().status_message.startswith("Flow failed: EXPORT_GATE_FAILED")


def test_capture_stop_failure_does_not_fail_the_run() -> None:
    gateway = ScriptedGateway(
        {"capture_stop": AppResult.failure(AppError(code="IO", message="helper gone"))}
    )

    result, stages, events = _run(gateway)

    assert result.ok
    assert stages[-1] == "complete"
    assert {"event": "capture_stop_failed", "code": "IO"} in events


def test_missing_export_path_becomes_internal_error() -> None:
    gateway = ScriptedGateway({"tutorial_export_pack": AppResult.success({"bundle_hash": "x"})})

    result, stages, _ = _run(gateway)

    assert result.error_code == "INTERNAL"
    assert stages[-1] == "export"
    assert "export_verify_bundle" not in gateway.commands


FLOW_COMMANDS = [
    ("session", "session_create"),
    ("capture", "capture_start"),
    ("ocr", "ocr_schedule"),
    ("steps", "steps_generate_candidates"),
    ("tutorial", "tutorial_generate"),
    ("validate", "tutorial_validate_export"),
    ("export", "tutorial_export_pack"),
    ("verify", "export_verify_bundle"),
]


@pytest.mark.parametrize(("stage", "command"), FLOW_COMMANDS)
def test_transport_failure_at_any_stage_ends_the_run(stage: str, command: str) -> None:
    index = FLOW_COMMANDS.index((stage, command))
    injected = AppError(code="IO", message=f"{command} transport closed", recoverable=True)
    gateway = ScriptedGateway({command: AppResult.failure(injected)})
    store = UiStateStore()

    result, stages, _ = _run(gateway, store)

    assert result.error is injected
    assert stages[-1] == stage
    assert stages == list(STAGES[: index + 1])
    assert gateway.commands == [name for _, name in FLOW_COMMANDS[: index + 1]]
    assert store.get_state().last_error_code == "IO"


@pytest.mark.parametrize(
    ("command", "value", "stage"),
    [
        ("tutorial_validate_export", {"reasons": ["a"]}, "validate"),
        ("tutorial_validate_export", ["allowed"], "validate"),
        ("export_verify_bundle", {"valid": "yes", "issues": []}, "verify"),
        ("export_verify_bundle", None, "verify"),
    ],
)
def test_malformed_gate_response_is_internal(command: str, value: Any, stage: str) -> None:
    gateway = ScriptedGateway({command: AppResult.success(value)})

    result, stages, _ = _run(gateway)

    assert result.error_code == "INTERNAL"
    assert stages[-1] == stage
    assert gateway.commands[-1] == command
