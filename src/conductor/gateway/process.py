from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from conductor.errors import AppError, AppResult, internal_error
from conductor.gateway.base import (
    GatewayEventHook,
    RemoteCommandGateway,
    coerce_result,
    is_known_command,
    unsupported_command,
    wire_payload,
)

BINARY_HINT = "Set [gateway] binary in conductor.toml"


class ProcessGateway(RemoteCommandGateway):
    """Runs ``<binary> invoke <command>`` once per call, exchanging JSON over stdio."""

    def __init__(
        self,
        binary: str = "conductor-backend",
        working_directory: Path | None = None,
        event_hook: GatewayEventHook | None = None,
    ) -> None:
        self.binary = binary
        self.working_directory = working_directory
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    def build_command(self, command: str) -> list[str]:
        return [self.binary, "invoke", command]

    @staticmethod
    def _stderr_error(stderr_output: str, return_code: int) -> AppError:
        try:
            parsed = json.loads(stderr_output)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            decoded = AppError.from_dict(parsed)
            if decoded is not None:
                return decoded
        return internal_error(
            f"Backend process failed with exit code {return_code}",
            details=stderr_output[:2000] or None,
        )

    async def invoke(self, command: str, request: Any) -> AppResult:
        if not is_known_command(command):
            return unsupported_command(command)

        argv = self.build_command(command)
        stdin_bytes = json.dumps(wire_payload(command, request), ensure_ascii=False).encode(
            "utf-8"
        )
        self._emit({"event": "gateway_invoke_start", "command": command})
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.working_directory) if self.working_directory else None,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return AppResult.failure(
                AppError(
                    code="INTERNAL",
                    message=f"Backend binary not found: {self.binary}",
                    recoverable=False,
                    action_hint=BINARY_HINT,
                )
            )
        except OSError as exc:
            return AppResult.failure(
                AppError(
                    code="INTERNAL",
                    message=f"Backend binary could not be started: {exc}",
                    recoverable=False,
                    action_hint=BINARY_HINT,
                )
            )

        try:
            stdout, stderr = await process.communicate(stdin_bytes)
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            await process.wait()
            self._emit({"event": "gateway_invoke_killed", "command": command})
            raise
        return_code = process.returncode if process.returncode is not None else -1
        stderr_output = stderr.decode("utf-8", errors="replace").strip()
        self._emit(
            {
                "event": "gateway_invoke_exit",
                "command": command,
                "exit_code": return_code,
                "stderr": stderr_output[:400],
            }
        )
        if return_code != 0:
            return AppResult.failure(self._stderr_error(stderr_output, return_code))

        raw_text = stdout.decode("utf-8", errors="replace").strip()
        if not raw_text:
            return AppResult.success(None)
        try:
            raw = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            return AppResult.failure(
                internal_error(
                    f"Backend returned undecodable output for {command}",
                    details=str(exc),
                )
            )
        return coerce_result(raw)
