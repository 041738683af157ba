from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

ErrorCode = Literal[
    "PERMISSION_DENIED",
    "VALIDATION_FAILED",
    "NOT_FOUND",
    "CONFLICT",
    "POLICY_BLOCKED",
    "NETWORK_BLOCKED",
    "EXPORT_GATE_FAILED",
    "PROVIDER_SCHEMA_INVALID",
    "IO",
    "DB",
    "JOB_CANCELLED",
    "UNSUPPORTED",
    "INTERNAL",
]

ERROR_CODES: frozenset[str] = frozenset(
    {
        "PERMISSION_DENIED",
        "VALIDATION_FAILED",
        "NOT_FOUND",
        "CONFLICT",
        "POLICY_BLOCKED",
        "NETWORK_BLOCKED",
        "EXPORT_GATE_FAILED",
        "PROVIDER_SCHEMA_INVALID",
        "IO",
        "DB",
        "JOB_CANCELLED",
        "UNSUPPORTED",
        "INTERNAL",
    }
)


class ConfigError(RuntimeError):
    """Raised when conductor.toml cannot be interpreted."""


@dataclass(slots=True, frozen=True)
class AppError:
    code: ErrorCode
    message: str
    details: str | None = None
    recoverable: bool = False
    action_hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.details is not None:
            payload["details"] = self.details
        if self.action_hint is not None:
            payload["action_hint"] = self.action_hint
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppError | None:
        """Decode a structured error payload, or return None when it is not one."""
        code = data.get("code")
        message = data.get("message")
        if not isinstance(code, str) or not isinstance(message, str):
            return None
        details = data.get("details")
        action_hint = data.get("action_hint")
        recoverable = data.get("recoverable")
        return cls(
            code=code if code in ERROR_CODES else "INTERNAL",  # type: ignore[arg-type]
            message=message,
            details=details if isinstance(details, str) else None,
            recoverable=recoverable if isinstance(recoverable, bool) else False,
            action_hint=action_hint if isinstance(action_hint, str) else None,
        )


def internal_error(message: str, *, details: str | None = None) -> AppError:
    return AppError(code="INTERNAL", message=message, details=details, recoverable=False)


@dataclass(slots=True, frozen=True)
class AppResult:
    """Tagged outcome of a remote command: either ``value`` or ``error`` is meaningful."""

    ok: bool
    value: Any = None
    error: AppError | None = None

    @classmethod
    def success(cls, value: Any) -> AppResult:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: AppError) -> AppResult:
        return cls(ok=False, error=error)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        assert self.error is not None
        return {"ok": False, "error": self.error.to_dict()}
