from __future__ import annotations

import asyncio
from typing import Any

from conductor.errors import AppError, AppResult
from conductor.gateway.base import GatewayEventHook, RemoteCommandGateway


class TimeoutGateway(RemoteCommandGateway):
    """Bounds every call on the wrapped gateway; never retries."""

    def __init__(
        self,
        inner: RemoteCommandGateway,
        timeout_seconds: float | None = 120.0,
        event_hook: GatewayEventHook | None = None,
    ) -> None:
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    @property
    def bounded(self) -> bool:
        return self.timeout_seconds is not None and self.timeout_seconds > 0

    async def invoke(self, command: str, request: Any) -> AppResult:
        if not self.bounded:
            return await self.inner.invoke(command, request)
        try:
            return await asyncio.wait_for(
                self.inner.invoke(command, request),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            self._emit(
                {
                    "event": "gateway_timeout",
                    "command": command,
                    "timeout_seconds": self.timeout_seconds,
                }
            )
            return AppResult.failure(
                AppError(
                    code="IO",
                    message=f"{command} timed out after {self.timeout_seconds:.1f}s",
                    recoverable=True,
                    action_hint="Check that the backend is responsive and retry",
                )
            )
