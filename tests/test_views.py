import asyncio
from typing import Any

import pytest

from conductor.errors import AppError, AppResult
from conductor.gateway.base import RemoteCommandGateway
from conductor.views import (
    ROUTES,
    AppShell,
    PermissionsView,
    ProofLedgerView,
    SlicerStudioView,
    StepsView,
    view_to_dict,
)


class TableGateway(RemoteCommandGateway):
    """Serves fixed results per command; anything unlisted fails with NOT_FOUND."""

    def __init__(self, table: dict[str, AppResult]) -> None:
        self.table = table
        self.calls: list[tuple[str, Any]] = []

    async def invoke(self, command: str, request: Any) -> AppResult:
        self.calls.append((command, request))
        if command in self.table:
            return self.table[command]
        return AppResult.failure(AppError(code="NOT_FOUND", message=command))


def _load(shell: AppShell, route: str):
    return asyncio.run(shell.load_route(route))


def test_every_route_loads_against_a_failing_backend() -> None:
    shell = AppShell(TableGateway({}))
    shell.store.set_active_session("s1")

    for route in ROUTES:
        view = _load(shell, route)
        assert isinstance(view_to_dict(view), dict)
        assert shell.store.get_state().active_route == route


def test_unknown_route_raises_value_error() -> None:
    shell = AppShell(TableGateway({}))

    with pytest.raises(ValueError):
        _load(shell, "settings")


def test_permissions_view_combines_permissions_and_settings() -> None:
    shell = AppShell(
        TableGateway(
            {
                "app_get_permissions_status": AppResult.success(
                    {"screen_recording": True, "accessibility": False}
                ),
                "settings_get": AppResult.success({"offline_mode": False}),
            }
        )
    )

    view = _load(shell, "permissions")

    assert view == PermissionsView(
        screen_recording=True, accessibility=False, full_disk_access=False, offline_mode=False
    )


def test_steps_view_caches_head_seq() -> None:
    gateway = TableGateway(
        {
            "steps_list": AppResult.success(
                {
                    "head_seq": 6,
                    "steps": [
                        {"step_id": "st1", "title": "Open app", "order_index": 0, "body": "x"}
                    ],
                }
            )
        }
    )
    shell = AppShell(gateway)
    shell.store.set_active_session("s1")

    view = _load(shell, "steps")

    assert view == StepsView(
        steps=[{"step_id": "st1", "title": "Open app", "order_index": 0}], head_seq=6
    )
    assert shell.store.get_state().session_head_seq == {"s1": 6}


def test_views_without_session_skip_session_scoped_calls() -> None:
    gateway = TableGateway({})
    shell = AppShell(gateway)

    steps = _load(shell, "steps")
    slicer = _load(shell, "slicer_studio")

    assert steps == StepsView()
    assert slicer == SlicerStudioView(issues=["No active session"])
    assert gateway.calls == []


def test_slicer_studio_reports_gate_reasons() -> None:
    shell = AppShell(
        TableGateway(
            {
                "tutorial_validate_export": AppResult.success(
                    {"allowed": False, "reasons": ["step 2 has no anchor"]}
                )
            }
        )
    )
    shell.store.set_active_session("s1")

    view = _load(shell, "slicer_studio")

    assert view == SlicerStudioView(strict_ready=False, issues=["step 2 has no anchor"])


def test_proof_ledger_verifies_at_most_five_exports() -> None:
    exports = [
        {"export_id": f"e{index}", "output_path": f"/x/{index}.zip", "bundle_hash": "h"}
        for index in range(7)
    ]
    gateway = TableGateway(
        {
            "proof_get_view": AppResult.success(
                {"warnings": ["w"], "steps": [{}, {}], "evidence": {"evidence": [{}]}}
            ),
            "exports_list": AppResult.success({"exports": exports}),
            "export_verify_bundle": AppResult.success({"valid": True, "issues": []}),
        }
    )
    shell = AppShell(gateway)
    shell.store.set_active_session("s1")

    view = _load(shell, "proof_ledger")

    assert isinstance(view, ProofLedgerView)
    assert (view.warning_count, view.step_count, view.evidence_count) == (1, 2, 1)
    assert len(view.exports) == 5
    assert all(row["verify_valid"] is True for row in view.exports)
    verified = [request for command, request in gateway.calls if command == "export_verify_bundle"]
    assert verified[0] == {"bundle_path": "/x/0.zip"}
    assert len(verified) == 5


def test_model_dock_view_maps_roles() -> None:
    shell = AppShell(
        TableGateway(
            {
                "models_list": AppResult.success({"models": [{}, {}, {}]}),
                "bench_list": AppResult.success({"benches": [{}]}),
                "model_roles_get": AppResult.success({"tutorial_generation": "llama3"}),
            }
        )
    )

    view = _load(shell, "model_dock")

    assert view.model_count == 3
    assert view.bench_count == 1
    assert view.role_map == {
        "tutorial_generation": "llama3",
        "screen_explainer": "",
        "anchor_grounding": "",
    }
