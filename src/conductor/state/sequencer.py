from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from conductor.state.store import (
    CAPTURE_STATES,
    JOB_STATUSES,
    CaptureStatusPayload,
    JobProgressPayload,
    JobStatusPayload,
    StatusEnvelope,
    UiStateStore,
)

CHANNELS: tuple[str, ...] = ("job_status", "job_progress", "capture_status")

MessageHook = Callable[[str], None]


@dataclass(slots=True)
class ChannelTelemetry:
    last_seq: int | None = None
    gap_count: int = 0
    event_count: int = 0
    stale_count: int = 0
    malformed_count: int = 0


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


Payload = JobStatusPayload | JobProgressPayload | CaptureStatusPayload


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return max(0, value)


def _parse_payload(channel: str, raw: Any) -> Payload | None:
    if not isinstance(raw, dict):
        return None
    if channel == "job_status":
        job_id = _optional_str(raw.get("job_id"))
        status = raw.get("status")
        if job_id is None or status not in JOB_STATUSES:
            return None
        return JobStatusPayload(job_id=job_id, status=status)
    if channel == "job_progress":
        job_id = _optional_str(raw.get("job_id"))
        pct = raw.get("pct")
        if job_id is None or isinstance(pct, bool) or not isinstance(pct, int):
            return None
        counters = raw.get("counters")
        counters = counters if isinstance(counters, dict) else {}
        return JobProgressPayload(
            job_id=job_id,
            stage=str(raw.get("stage", "")),
            pct=max(0, min(100, pct)),
            done=_count(counters.get("done")),
            total=_count(counters.get("total")),
        )
    if channel == "capture_status":
        state = raw.get("state")
        if state not in CAPTURE_STATES:
            return None
        return CaptureStatusPayload(state=state, session_id=_optional_str(raw.get("session_id")))
    return None


class EventSequencer:
    """Folds push-channel envelopes into the store while tracking delivery gaps.

    Only loss is modelled. A late or duplicate envelope is still folded into
    the store but never moves ``last_seq`` backwards or reduces ``gap_count``.
    Nothing here raises: malformed input is counted and dropped.
    """

    def __init__(self, store: UiStateStore, on_message: MessageHook | None = None) -> None:
        self.store = store
        self.on_message = on_message
        self._telemetry: dict[str, ChannelTelemetry] = {
            channel: ChannelTelemetry() for channel in CHANNELS
        }

    def telemetry(self, channel: str) -> ChannelTelemetry:
        counters = self._telemetry.get(channel) or ChannelTelemetry()
        return ChannelTelemetry(**asdict(counters))

    def _counters(self, channel: str) -> ChannelTelemetry:
        return self._telemetry.setdefault(channel, ChannelTelemetry())

    def _surface(self, message: str) -> None:
        self.store.set_status_message(message)
        if self.on_message is not None:
            self.on_message(message)

    def _advance(self, counters: ChannelTelemetry, stream_seq: int) -> None:
        if counters.last_seq is not None and stream_seq <= counters.last_seq:
            counters.stale_count += 1
        else:
            if counters.last_seq is not None and stream_seq > counters.last_seq + 1:
                counters.gap_count += stream_seq - counters.last_seq - 1
            counters.last_seq = stream_seq
        counters.event_count += 1

    def ingest(self, channel: str, raw_envelope: Any) -> bool:
        """Process one envelope; returns False when it was dropped."""
        if channel not in CHANNELS:
            return False
        counters = self._counters(channel)
        if not isinstance(raw_envelope, dict):
            counters.malformed_count += 1
            return False
        stream_seq = raw_envelope.get("stream_seq")
        if isinstance(stream_seq, bool) or not isinstance(stream_seq, int):
            counters.malformed_count += 1
            return False
        payload = _parse_payload(channel, raw_envelope.get("payload"))
        if payload is None:
            counters.malformed_count += 1
            return False

        self._advance(counters, stream_seq)
        envelope = StatusEnvelope(
            stream_seq=stream_seq,
            sent_at=str(raw_envelope.get("sent_at", "")),
            payload=payload,
        )
        if isinstance(payload, JobStatusPayload):
            self.store.ingest_job_status(envelope)
            if payload.status == "FAILED":
                self._surface(f"Job {payload.job_id} failed")
        elif isinstance(payload, JobProgressPayload):
            self.store.ingest_job_progress(envelope)
        else:
            self.store.ingest_capture_status(envelope)
            self._surface(f"Capture {payload.state.lower()}")
        return True

    def ingest_line(self, line: str) -> bool:
        """Accept one ``{"channel": ..., "envelope": ...}`` JSON line."""
        text = line.strip()
        if not text:
            return False
        try:
            record = json.loads(text)
        except json.JSONDecodeError:
            self._counters("unknown").malformed_count += 1
            return False
        if not isinstance(record, dict) or not isinstance(record.get("channel"), str):
            self._counters("unknown").malformed_count += 1
            return False
        return self.ingest(record["channel"], record.get("envelope"))
