from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Literal

JobStatus = Literal["QUEUED", "RUNNING", "SUCCEEDED", "FAILED", "CANCELLED"]
CaptureState = Literal["IDLE", "CAPTURING", "STOPPED"]

JOB_STATUSES = frozenset({"QUEUED", "RUNNING", "SUCCEEDED", "FAILED", "CANCELLED"})
CAPTURE_STATES = frozenset({"IDLE", "CAPTURING", "STOPPED"})


@dataclass(slots=True)
class JobStatusPayload:
    job_id: str
    status: JobStatus


@dataclass(slots=True)
class JobProgressPayload:
    job_id: str
    stage: str
    pct: int
    done: int = 0
    total: int = 0


@dataclass(slots=True)
class CaptureStatusPayload:
    state: CaptureState
    session_id: str | None = None


@dataclass(slots=True)
class StatusEnvelope:
    stream_seq: int
    sent_at: str
    payload: JobStatusPayload | JobProgressPayload | CaptureStatusPayload


@dataclass(slots=True)
class Invalidations:
    jobs: bool = False
    capture: bool = False
    session: bool = False


@dataclass(slots=True)
class UiState:
    active_route: str = "permissions"
    active_session_id: str | None = None
    session_head_seq: dict[str, int] = field(default_factory=dict)
    jobs: dict[str, JobStatus] = field(default_factory=dict)
    job_progress: dict[str, JobProgressPayload] = field(default_factory=dict)
    capture_state: CaptureState = "IDLE"
    invalidated: Invalidations = field(default_factory=Invalidations)
    last_error_code: str | None = None
    status_message: str = "Ready"

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_route": self.active_route,
            "active_session_id": self.active_session_id,
            "session_head_seq": dict(self.session_head_seq),
            "jobs": dict(self.jobs),
            "job_progress": {
                job_id: {
                    "stage": progress.stage,
                    "pct": progress.pct,
                    "counters": {"done": progress.done, "total": progress.total},
                }
                for job_id, progress in self.job_progress.items()
            },
            "capture_state": self.capture_state,
            "invalidated": {
                "jobs": self.invalidated.jobs,
                "capture": self.invalidated.capture,
                "session": self.invalidated.session,
            },
            "last_error_code": self.last_error_code,
            "status_message": self.status_message,
        }


class UiStateStore:
    """Sole owner of derived UI state.

    Invalidation flags are hints for consumers deciding whether to re-fetch a
    view. Consumers poll them and reset them with ``clear_invalidations``.
    """

    def __init__(self, initial_route: str = "permissions") -> None:
        self._state = UiState(active_route=initial_route)

    def get_state(self) -> UiState:
        return copy.deepcopy(self._state)

    def set_active_route(self, route: str) -> None:
        if self._state.active_route != route:
            self._state.active_route = route

    def set_active_session(self, session_id: str | None) -> None:
        if self._state.active_session_id != session_id:
            self._state.active_session_id = session_id
            self._state.invalidated.session = True

    def set_session_head_seq(self, session_id: str, next_head_seq: int) -> None:
        previous = self._state.session_head_seq.get(session_id)
        if previous is not None and next_head_seq <= previous:
            return
        self._state.session_head_seq[session_id] = next_head_seq
        self._state.invalidated.session = True

    def ingest_job_status(self, event: StatusEnvelope) -> None:
        payload = event.payload
        assert isinstance(payload, JobStatusPayload)
        self._state.jobs[payload.job_id] = payload.status
        self._state.invalidated.jobs = True

    def ingest_job_progress(self, event: StatusEnvelope) -> None:
        payload = event.payload
        assert isinstance(payload, JobProgressPayload)
        self._state.job_progress[payload.job_id] = payload
        self._state.invalidated.jobs = True

    def ingest_capture_status(self, event: StatusEnvelope) -> None:
        payload = event.payload
        assert isinstance(payload, CaptureStatusPayload)
        self._state.capture_state = payload.state
        if payload.session_id:
            self._state.active_session_id = payload.session_id
        self._state.invalidated.capture = True

    def record_job_handle(self, job_id: str) -> None:
        """Track a freshly scheduled job until its first status event arrives."""
        if job_id not in self._state.jobs:
            self._state.jobs[job_id] = "QUEUED"
            self._state.invalidated.jobs = True

    def clear_invalidations(self) -> None:
        self._state.invalidated.jobs = False
        self._state.invalidated.capture = False
        self._state.invalidated.session = False

    def set_last_error(self, code: str | None) -> None:
        self._state.last_error_code = code

    def set_status_message(self, message: str) -> None:
        self._state.status_message = message
