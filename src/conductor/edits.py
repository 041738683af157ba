from __future__ import annotations

from collections.abc import Callable
from typing import Any

from conductor.errors import AppResult, internal_error
from conductor.gateway.base import RemoteCommandGateway
from conductor.state.store import UiStateStore

EditEventHook = Callable[[dict[str, Any]], None]


class EditConflictResolver:
    """Optimistic-concurrency step edits with a single refresh-and-retry on CONFLICT.

    The retry is capped at one so two contending editors cannot livelock each
    other. Anything other than CONFLICT, and any failure of the refresh or of
    the retry itself, is returned to the caller unchanged.
    """

    def __init__(
        self,
        gateway: RemoteCommandGateway,
        store: UiStateStore | None = None,
        event_hook: EditEventHook | None = None,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def _attempt(
        self, session_id: str, base_seq: int, op: dict[str, Any], attempt: int
    ) -> AppResult:
        self._emit(
            {
                "event": "edit_attempt",
                "session_id": session_id,
                "base_seq": base_seq,
                "attempt": attempt,
            }
        )
        return await self.gateway.invoke(
            "steps_apply_edit",
            {"session_id": session_id, "base_seq": base_seq, "op": op},
        )

    async def _refresh_head_seq(self, session_id: str) -> AppResult:
        listed = await self.gateway.invoke("steps_list", {"session_id": session_id})
        if not listed.ok:
            return listed
        value = listed.value if isinstance(listed.value, dict) else {}
        head_seq = value.get("head_seq")
        if isinstance(head_seq, bool) or not isinstance(head_seq, int):
            return AppResult.failure(
                internal_error(f"steps_list returned no head_seq for session {session_id}")
            )
        return AppResult.success(head_seq)

    def _record(self, session_id: str, result: AppResult) -> AppResult:
        if self.store is None:
            return result
        if not result.ok:
            self.store.set_last_error(result.error_code)
            return result
        value = result.value if isinstance(result.value, dict) else {}
        head_seq = value.get("head_seq")
        if value.get("applied") and isinstance(head_seq, int) and not isinstance(head_seq, bool):
            self.store.set_session_head_seq(session_id, head_seq)
        return result

    async def apply_edit_with_conflict_retry(
        self, session_id: str, base_seq: int, op: dict[str, Any]
    ) -> AppResult:
        initial = await self._attempt(session_id, base_seq, op, attempt=1)
        if initial.ok or initial.error_code != "CONFLICT":
            return self._record(session_id, initial)

        self._emit({"event": "edit_conflict", "session_id": session_id, "base_seq": base_seq})
        refreshed = await self._refresh_head_seq(session_id)
        if not refreshed.ok:
            self._emit(
                {
                    "event": "edit_refresh_failed",
                    "session_id": session_id,
                    "code": refreshed.error_code,
                }
            )
            return self._record(session_id, refreshed)

        head_seq: int = refreshed.value
        if self.store is not None:
            self.store.set_session_head_seq(session_id, head_seq)
        retried = await self._attempt(session_id, head_seq, op, attempt=2)
        return self._record(session_id, retried)
