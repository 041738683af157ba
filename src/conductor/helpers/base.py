from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from conductor.errors import AppError, ErrorCode

HelperEventHook = Callable[[dict[str, Any]], None]


class HelperError(RuntimeError):
    """Raised when a capture or recognition helper process fails."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = "IO",
        helper: str | None = None,
        exit_code: int | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.helper = helper
        self.exit_code = exit_code
        self.recoverable = recoverable

    def to_app_error(self) -> AppError:
        return AppError(code=self.code, message=str(self), recoverable=self.recoverable)


@dataclass(slots=True)
class HelperOutput:
    exit_code: int
    stdout: bytes
    stderr: str


async def run_helper(
    helper: str,
    argv: list[str],
    *,
    stdin_bytes: bytes | None = None,
    timeout_seconds: float | None = None,
    event_hook: HelperEventHook | None = None,
) -> HelperOutput:
    """Run one helper invocation to completion; non-zero exits raise HelperError."""

    def _emit(payload: dict[str, Any]) -> None:
        if event_hook is not None:
            event_hook(payload)

    _emit({"event": "helper_start", "helper": helper, "command": argv[:2]})
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin_bytes is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise HelperError(
            f"{helper} helper binary not found: {argv[0]}",
            code="UNSUPPORTED",
            helper=helper,
            recoverable=False,
        ) from exc

    try:
        if timeout_seconds is not None and timeout_seconds > 0:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_bytes), timeout=timeout_seconds
            )
        else:
            stdout, stderr = await process.communicate(stdin_bytes)
    except TimeoutError as exc:
        process.kill()
        await process.wait()
        _emit({"event": "helper_timeout", "helper": helper, "timeout_seconds": timeout_seconds})
        raise HelperError(
            f"{helper} helper timed out after {timeout_seconds:.1f}s",
            helper=helper,
        ) from exc

    return_code = process.returncode if process.returncode is not None else -1
    stderr_output = stderr.decode("utf-8", errors="replace").strip()
    _emit(
        {
            "event": "helper_exit",
            "helper": helper,
            "exit_code": return_code,
            "stderr": stderr_output[:400],
        }
    )
    if return_code != 0:
        raise HelperError(
            f"{helper} helper failed with exit code {return_code}: {stderr_output}",
            helper=helper,
            exit_code=return_code,
        )
    return HelperOutput(exit_code=return_code, stdout=stdout, stderr=stderr_output)
