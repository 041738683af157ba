from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from conductor.errors import AppError, AppResult, internal_error

GatewayEventHook = Callable[[dict[str, Any]], None]

COMMANDS: tuple[str, ...] = (
    "app_get_build_info",
    "app_get_permissions_status",
    "settings_get",
    "settings_set",
    "network_allowlist_get",
    "network_allowlist_set",
    "session_create",
    "session_list",
    "session_get",
    "session_close",
    "timeline_get_keyframes",
    "timeline_get_events",
    "timeline_get_thumbnail",
    "capture_get_config",
    "capture_set_config",
    "capture_start",
    "capture_stop",
    "capture_get_status",
    "ocr_schedule",
    "ocr_get_status",
    "ocr_search",
    "ocr_get_blocks_for_frame",
    "evidence_for_time_range",
    "evidence_for_step",
    "evidence_find_text",
    "evidence_get_coverage",
    "steps_generate_candidates",
    "steps_list",
    "steps_get",
    "steps_apply_edit",
    "steps_validate",
    "anchors_list_for_step",
    "anchors_reacquire",
    "anchors_manual_set",
    "anchors_debug",
    "tutorial_generate",
    "tutorial_export_pack",
    "tutorial_validate_export",
    "explain_this_screen",
    "proof_get_view",
    "runbook_create",
    "runbook_update",
    "runbook_export",
    "proof_export_bundle",
    "verifier_list",
    "verifier_run",
    "verifier_get_result",
    "models_list",
    "models_register",
    "models_remove",
    "model_roles_get",
    "model_roles_set",
    "ollama_list",
    "ollama_pull",
    "ollama_run",
    "mlx_run",
    "bench_run",
    "bench_list",
    "agent_pipelines_list",
    "agent_pipeline_run",
    "agent_pipeline_report",
    "exports_list",
    "export_verify_bundle",
    "jobs_list",
    "jobs_get",
    "jobs_cancel",
)

# Sent bare on the wire; everything else is wrapped as {"req": ...}.
NO_REQUEST_COMMANDS = frozenset(
    {
        "app_get_build_info",
        "app_get_permissions_status",
        "settings_get",
        "network_allowlist_get",
        "capture_get_config",
        "model_roles_get",
        "agent_pipelines_list",
    }
)

_KNOWN_COMMANDS = frozenset(COMMANDS)


def is_known_command(command: str) -> bool:
    return command in _KNOWN_COMMANDS


def wire_payload(command: str, request: Any) -> Any:
    if command in NO_REQUEST_COMMANDS:
        return request
    return {"req": request}


def is_app_result(raw: Any) -> bool:
    return isinstance(raw, dict) and isinstance(raw.get("ok"), bool)


def to_app_error(raw: Any) -> AppError:
    if isinstance(raw, dict):
        decoded = AppError.from_dict(raw)
        if decoded is not None:
            return decoded
    if isinstance(raw, BaseException):
        return internal_error(str(raw) or type(raw).__name__)
    return internal_error(str(raw if raw is not None else "Unknown gateway error"))


def coerce_result(raw: Any) -> AppResult:
    """Discriminate a decoded transport value into an AppResult."""
    if not is_app_result(raw):
        return AppResult.success(raw)
    if raw["ok"]:
        return AppResult.success(raw.get("value"))
    error = raw.get("error")
    if isinstance(error, dict):
        decoded = AppError.from_dict(error)
        if decoded is not None:
            return AppResult.failure(decoded)
    return AppResult.failure(
        internal_error("Malformed failure envelope from backend", details=repr(error)[:400])
    )


def unsupported_command(command: str) -> AppResult:
    return AppResult.failure(
        AppError(
            code="UNSUPPORTED",
            message=f"Unknown command: {command}",
            recoverable=False,
        )
    )


class RemoteCommandGateway(ABC):
    @abstractmethod
    async def invoke(self, command: str, request: Any) -> AppResult:
        """Issue one named command and return its success value or structured error."""
