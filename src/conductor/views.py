from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from conductor.edits import EditConflictResolver
from conductor.errors import AppResult
from conductor.gateway.base import RemoteCommandGateway
from conductor.state.store import UiStateStore
from conductor.workflow import CoreFlowRequest, FlowEventHook, WorkflowOrchestrator

AppRoute = Literal[
    "permissions",
    "capture",
    "evidence",
    "steps",
    "anchors",
    "slicer_studio",
    "proof_ledger",
    "model_dock",
    "agent_plant",
]

ROUTES: tuple[AppRoute, ...] = (
    "permissions",
    "capture",
    "evidence",
    "steps",
    "anchors",
    "slicer_studio",
    "proof_ledger",
    "model_dock",
    "agent_plant",
)

MAX_VERIFIED_EXPORTS = 5


def _value(result: AppResult) -> dict[str, Any]:
    if result.ok and isinstance(result.value, dict):
        return result.value
    return {}


def _list(payload: dict[str, Any], key: str) -> list[Any]:
    found = payload.get(key)
    return found if isinstance(found, list) else []


@dataclass(slots=True)
class PermissionsView:
    screen_recording: bool = False
    accessibility: bool = False
    full_disk_access: bool = False
    offline_mode: bool = True


@dataclass(slots=True)
class CaptureView:
    status: dict[str, Any] | None = None
    keyframes: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class EvidenceView:
    coverage_pct: int = 0
    missing_step_ids: list[str] = field(default_factory=list)
    evidence_count: int = 0


@dataclass(slots=True)
class StepsView:
    steps: list[dict[str, Any]] = field(default_factory=list)
    head_seq: int = 0


@dataclass(slots=True)
class AnchorsView:
    step_id: str | None = None
    anchors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class SlicerStudioView:
    strict_ready: bool = False
    issues: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ProofLedgerView:
    warning_count: int = 0
    step_count: int = 0
    evidence_count: int = 0
    exports: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class ModelDockView:
    model_count: int = 0
    bench_count: int = 0
    role_map: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class AgentPlantView:
    pipelines: list[str] = field(default_factory=list)
    can_run: bool = False


async def load_permissions_view(gateway: RemoteCommandGateway) -> PermissionsView:
    permissions = await gateway.invoke("app_get_permissions_status", {})
    settings = await gateway.invoke("settings_get", {})
    granted = _value(permissions)
    configured = _value(settings)
    return PermissionsView(
        screen_recording=bool(granted.get("screen_recording", False)),
        accessibility=bool(granted.get("accessibility", False)),
        full_disk_access=bool(granted.get("full_disk_access", False)),
        offline_mode=bool(configured.get("offline_mode", True)) if settings.ok else True,
    )


async def load_capture_view(gateway: RemoteCommandGateway, session_id: str | None) -> CaptureView:
    status = await gateway.invoke("capture_get_status", {"session_id": session_id})
    view = CaptureView(status=status.value if status.ok else None)
    if not session_id:
        return view
    keyframes = await gateway.invoke(
        "timeline_get_keyframes",
        {"session_id": session_id, "start_ms": 0, "end_ms": 2**53 - 1},
    )
    for frame in _list(_value(keyframes), "keyframes"):
        if not isinstance(frame, dict):
            continue
        asset = frame.get("asset") if isinstance(frame.get("asset"), dict) else {}
        view.keyframes.append(
            {
                "frame_event_id": frame.get("frame_event_id"),
                "frame_ms": frame.get("frame_ms"),
                "asset_id": asset.get("asset_id"),
            }
        )
    return view


async def load_evidence_view(gateway: RemoteCommandGateway, session_id: str | None) -> EvidenceView:
    if not session_id:
        return EvidenceView()
    coverage = await gateway.invoke("evidence_get_coverage", {"session_id": session_id})
    evidence = await gateway.invoke(
        "evidence_for_time_range",
        {"session_id": session_id, "start_ms": 0, "end_ms": 2**53 - 1},
    )
    covered = _value(coverage)
    return EvidenceView(
        coverage_pct=100 if covered.get("pass") else 0,
        missing_step_ids=[str(item) for item in _list(covered, "missing_step_ids")],
        evidence_count=len(_list(_value(evidence), "evidence")),
    )


async def load_steps_view(
    gateway: RemoteCommandGateway, store: UiStateStore, session_id: str | None
) -> StepsView:
    if not session_id:
        return StepsView()
    listed = await gateway.invoke("steps_list", {"session_id": session_id})
    if not listed.ok:
        return StepsView()
    payload = _value(listed)
    head_seq = payload.get("head_seq", 0)
    if not isinstance(head_seq, int) or isinstance(head_seq, bool):
        head_seq = 0
    store.set_session_head_seq(session_id, head_seq)
    steps = [
        {
            "step_id": step.get("step_id"),
            "title": step.get("title"),
            "order_index": step.get("order_index"),
        }
        for step in _list(payload, "steps")
        if isinstance(step, dict)
    ]
    return StepsView(steps=steps, head_seq=head_seq)


async def load_anchors_view(gateway: RemoteCommandGateway, session_id: str | None) -> AnchorsView:
    if not session_id:
        return AnchorsView()
    listed = await gateway.invoke("steps_list", {"session_id": session_id})
    steps = [step for step in _list(_value(listed), "steps") if isinstance(step, dict)]
    if not steps:
        return AnchorsView()
    step_id = str(steps[0].get("step_id"))
    anchors = await gateway.invoke(
        "anchors_list_for_step", {"session_id": session_id, "step_id": step_id}
    )
    return AnchorsView(step_id=step_id, anchors=_list(_value(anchors), "anchors"))


async def load_slicer_studio_view(
    gateway: RemoteCommandGateway, session_id: str | None
) -> SlicerStudioView:
    if not session_id:
        return SlicerStudioView(issues=["No active session"])
    validate = await gateway.invoke("tutorial_validate_export", {"session_id": session_id})
    if not validate.ok:
        assert validate.error is not None
        return SlicerStudioView(issues=[validate.error.message])
    decision = _value(validate)
    return SlicerStudioView(
        strict_ready=bool(decision.get("allowed", False)),
        issues=[str(item) for item in _list(decision, "reasons")],
    )


async def load_proof_ledger_view(
    gateway: RemoteCommandGateway, session_id: str | None
) -> ProofLedgerView:
    if not session_id:
        return ProofLedgerView()
    proof = await gateway.invoke("proof_get_view", {"session_id": session_id})
    if not proof.ok:
        return ProofLedgerView()
    ledger = _value(proof)
    evidence = ledger.get("evidence") if isinstance(ledger.get("evidence"), dict) else {}
    view = ProofLedgerView(
        warning_count=len(_list(ledger, "warnings")),
        step_count=len(_list(ledger, "steps")),
        evidence_count=len(_list(evidence, "evidence")),
    )

    listed = await gateway.invoke("exports_list", {"session_id": session_id})
    rows = [row for row in _list(_value(listed), "exports") if isinstance(row, dict)]
    for row in rows[:MAX_VERIFIED_EXPORTS]:
        verify = await gateway.invoke(
            "export_verify_bundle", {"bundle_path": row.get("output_path")}
        )
        verdict = _value(verify)
        view.exports.append(
            {
                "export_id": row.get("export_id"),
                "output_path": row.get("output_path"),
                "bundle_hash": row.get("bundle_hash"),
                "warnings": len(_list(row, "warnings")),
                "verify_valid": verdict.get("valid") if verify.ok else None,
                "verify_issues": _list(verdict, "issues") if verify.ok else None,
            }
        )
    return view


async def load_model_dock_view(gateway: RemoteCommandGateway) -> ModelDockView:
    models = await gateway.invoke("models_list", {"include_unhealthy": False})
    benches = await gateway.invoke("bench_list", {})
    roles = await gateway.invoke("model_roles_get", {})
    role_map: dict[str, str] = {}
    if roles.ok:
        assigned = _value(roles)
        for role in ("tutorial_generation", "screen_explainer", "anchor_grounding"):
            role_map[role] = str(assigned.get(role) or "")
    return ModelDockView(
        model_count=len(_list(_value(models), "models")),
        bench_count=len(_list(_value(benches), "benches")),
        role_map=role_map,
    )


async def load_agent_plant_view(
    gateway: RemoteCommandGateway, session_id: str | None
) -> AgentPlantView:
    pipelines = await gateway.invoke("agent_pipelines_list", {})
    return AgentPlantView(
        pipelines=[str(item) for item in _list(_value(pipelines), "pipelines")],
        can_run=bool(session_id),
    )


ViewModel = (
    PermissionsView
    | CaptureView
    | EvidenceView
    | StepsView
    | AnchorsView
    | SlicerStudioView
    | ProofLedgerView
    | ModelDockView
    | AgentPlantView
)


def view_to_dict(view: ViewModel) -> dict[str, Any]:
    return asdict(view)


class AppShell:
    """Binds one store, orchestrator and edit resolver to an injected gateway."""

    def __init__(
        self,
        gateway: RemoteCommandGateway,
        store: UiStateStore | None = None,
        event_hook: FlowEventHook | None = None,
    ) -> None:
        self.gateway = gateway
        self.store = store or UiStateStore()
        self.orchestrator = WorkflowOrchestrator(gateway, self.store, event_hook=event_hook)
        self.edits = EditConflictResolver(gateway, self.store, event_hook=event_hook)

    async def load_route(self, route: str) -> ViewModel:
        if route not in ROUTES:
            raise ValueError(f"Unknown route: {route}")
        self.store.set_active_route(route)
        session_id = self.store.get_state().active_session_id

        if route == "permissions":
            return await load_permissions_view(self.gateway)
        if route == "capture":
            return await load_capture_view(self.gateway, session_id)
        if route == "evidence":
            return await load_evidence_view(self.gateway, session_id)
        if route == "steps":
            return await load_steps_view(self.gateway, self.store, session_id)
        if route == "anchors":
            return await load_anchors_view(self.gateway, session_id)
        if route == "slicer_studio":
            return await load_slicer_studio_view(self.gateway, session_id)
        if route == "proof_ledger":
            return await load_proof_ledger_view(self.gateway, session_id)
        if route == "model_dock":
            return await load_model_dock_view(self.gateway)
        return await load_agent_plant_view(self.gateway, session_id)

    async def run_capture_to_tutorial_flow(self, request: CoreFlowRequest) -> AppResult:
        return await self.orchestrator.run_capture_to_tutorial_flow(request)

    async def apply_step_edit(
        self, session_id: str, base_seq: int, op: dict[str, Any]
    ) -> AppResult:
        return await self.edits.apply_edit_with_conflict_retry(session_id, base_seq, op)
