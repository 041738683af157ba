from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from conductor.errors import AppError, AppResult, internal_error
from conductor.gateway.base import RemoteCommandGateway
from conductor.state.store import UiStateStore

FlowStage = Literal[
    "session",
    "capture",
    "ocr",
    "steps",
    "tutorial",
    "validate",
    "export",
    "verify",
    "complete",
]

STAGES: tuple[FlowStage, ...] = (
    "session",
    "capture",
    "ocr",
    "steps",
    "tutorial",
    "validate",
    "export",
    "verify",
    "complete",
)

StageObserver = Callable[[FlowStage], None]
FlowEventHook = Callable[[dict[str, Any]], None]

EXPORT_GATE_HINT = "Fix steps or anchors before export"
VERIFY_GATE_HINT = "Inspect proof ledger and fix policy issues"


@dataclass(slots=True)
class CoreFlowRequest:
    session_label: str
    output_dir: str
    on_stage: StageObserver | None = None


@dataclass(slots=True)
class CoreFlowResult:
    session_id: str
    output_path: str
    bundle_hash: str
    verify_valid: bool
    verify_issues: list[str] = field(default_factory=list)
    tutorial_export_ok: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "tutorial_export_ok": self.tutorial_export_ok,
            "output_path": self.output_path,
            "bundle_hash": self.bundle_hash,
            "verify_valid": self.verify_valid,
            "verify_issues": list(self.verify_issues),
        }


class _StageFailed(Exception):
    def __init__(self, stage: FlowStage, error: AppError) -> None:
        super().__init__(error.message)
        self.stage = stage
        self.error = error


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


def _require_str(stage: FlowStage, value: Any, key: str) -> str:
    payload = value if isinstance(value, dict) else {}
    found = payload.get(key)
    if not isinstance(found, str) or not found:
        raise _StageFailed(stage, internal_error(f"{stage} stage response is missing '{key}'"))
    return found


def _require_bool(stage: FlowStage, value: Any, key: str) -> bool:
    found = value.get(key) if isinstance(value, dict) else None
    if not isinstance(found, bool):
        raise _StageFailed(stage, internal_error(f"{stage} stage response is missing '{key}'"))
    return found


class WorkflowOrchestrator:
    """Drives capture-to-tutorial as a strictly sequential, fail-fast stage pipeline.

    Every stage is one gateway call. The first failure ends the run and is
    returned as-is; earlier effects are left in place.
    """

    def __init__(
        self,
        gateway: RemoteCommandGateway,
        store: UiStateStore,
        event_hook: FlowEventHook | None = None,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def _enter(self, stage: FlowStage, request: CoreFlowRequest) -> None:
        self._emit({"event": "stage_started", "stage": stage})
        if request.on_stage is not None:
            request.on_stage(stage)

    async def _call(self, stage: FlowStage, command: str, payload: dict[str, Any]) -> Any:
        result = await self.gateway.invoke(command, payload)
        if not result.ok:
            assert result.error is not None
            raise _StageFailed(stage, result.error)
        return result.value

    def _record_job(self, value: Any) -> None:
        if isinstance(value, dict) and isinstance(value.get("job_id"), str):
            self.store.record_job_handle(value["job_id"])

    async def _run_stages(self, request: CoreFlowRequest) -> CoreFlowResult:
        self._enter("session", request)
        session = await self._call(
            "session",
            "session_create",
            {"label": request.session_label, "metadata": {}},
        )
        session_id = _require_str("session", session, "session_id")
        self.store.set_active_session(session_id)
        head_seq = session.get("head_seq", 0)
        if isinstance(head_seq, int) and not isinstance(head_seq, bool):
            self.store.set_session_head_seq(session_id, head_seq)
        scope = {"session_id": session_id}

        self._enter("capture", request)
        await self._call("capture", "capture_start", dict(scope))

        self._enter("ocr", request)
        self._record_job(await self._call("ocr", "ocr_schedule", dict(scope)))

        self._enter("steps", request)
        self._record_job(await self._call("steps", "steps_generate_candidates", dict(scope)))

        self._enter("tutorial", request)
        self._record_job(await self._call("tutorial", "tutorial_generate", dict(scope)))

        self._enter("validate", request)
        decision = await self._call("validate", "tutorial_validate_export", dict(scope))
        if not _require_bool("validate", decision, "allowed"):
            raise _StageFailed(
                "validate",
                AppError(
                    code="EXPORT_GATE_FAILED",
                    message="; ".join(_string_list(decision.get("reasons"))),
                    recoverable=False,
                    action_hint=EXPORT_GATE_HINT,
                ),
            )

        self._enter("export", request)
        exported = await self._call(
            "export",
            "tutorial_export_pack",
            {"session_id": session_id, "output_dir": request.output_dir},
        )
        output_path = _require_str("export", exported, "output_path")
        bundle_hash = _require_str("export", exported, "bundle_hash")

        self._enter("verify", request)
        verified = await self._call("verify", "export_verify_bundle", {"bundle_path": output_path})
        valid = _require_bool("verify", verified, "valid")
        issues = _string_list(verified.get("issues"))
        if not valid:
            raise _StageFailed(
                "verify",
                AppError(
                    code="EXPORT_GATE_FAILED",
                    message="Export verification failed",
                    details="; ".join(issues),
                    recoverable=True,
                    action_hint=VERIFY_GATE_HINT,
                ),
            )

        # Cleanup only; its outcome does not affect the run.
        stop = await self.gateway.invoke("capture_stop", dict(scope))
        if not stop.ok:
            self._emit({"event": "capture_stop_failed", "code": stop.error_code})

        self.store.set_last_error(None)
        self._enter("complete", request)
        return CoreFlowResult(
            session_id=session_id,
            output_path=output_path,
            bundle_hash=bundle_hash,
            verify_valid=True,
            verify_issues=issues,
        )

    async def run_capture_to_tutorial_flow(self, request: CoreFlowRequest) -> AppResult:
        try:
            result = await self._run_stages(request)
        except _StageFailed as failure:
            self.store.set_last_error(failure.error.code)
            self.store.set_status_message(
                f"Flow failed: {failure.error.code} {failure.error.message}"
            )
            self._emit(
                {
                    "event": "stage_failed",
                    "stage": failure.stage,
                    "code": failure.error.code,
                    "recoverable": failure.error.recoverable,
                }
            )
            return AppResult.failure(failure.error)

        self.store.set_status_message(f"Export verified: {result.output_path}")
        self._emit(
            {
                "event": "flow_complete",
                "session_id": result.session_id,
                "output_path": result.output_path,
            }
        )
        return AppResult.success(result)
