from __future__ import annotations

import json
import math
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from conductor.helpers.base import HelperError, HelperEventHook, run_helper


@dataclass(slots=True, frozen=True)
class BoundingBox:
    x: float
    y: float
    w: float
    h: float


@dataclass(slots=True, frozen=True)
class RecognizedText:
    text: str
    confidence: float
    bbox: BoundingBox


def _schema_error(reason: str) -> HelperError:
    return HelperError(
        f"provider schema invalid: {reason}",
        code="PROVIDER_SCHEMA_INVALID",
        helper="recognition",
        recoverable=False,
    )


def _is_norm(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and 0.0 <= value <= 1.0


def parse_recognition_output(raw: bytes | str) -> list[RecognizedText]:
    """Validate helper stdout and return the records in helper order."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise _schema_error(f"output is not JSON ({exc})") from exc
    if not isinstance(payload, list):
        raise _schema_error("expected a JSON array of blocks")

    records: list[RecognizedText] = []
    for item in payload:
        if not isinstance(item, dict):
            raise _schema_error("block must be an object")
        text = item.get("text")
        if not isinstance(text, str) or not text.strip():
            raise _schema_error("text cannot be empty")
        confidence = item.get("confidence")
        if not _is_norm(confidence):
            raise _schema_error("confidence out of range")
        x, y, w, h = (item.get(key) for key in ("x", "y", "w", "h"))
        if not all(_is_norm(value) for value in (x, y, w, h)):
            raise _schema_error("bbox out of range")
        if w <= 0.0 or h <= 0.0:
            raise _schema_error("bbox must be positive")
        if x + w > 1.0 + sys.float_info.epsilon or y + h > 1.0 + sys.float_info.epsilon:
            raise _schema_error("bbox exceeds normalized bounds")
        records.append(
            RecognizedText(
                text=text,
                confidence=float(confidence),
                bbox=BoundingBox(x=float(x), y=float(y), w=float(w), h=float(h)),
            )
        )
    return records


class RecognitionHelper:
    def __init__(
        self,
        binary: str = "conductor-recognize",
        timeout_seconds: float | None = None,
        event_hook: HelperEventHook | None = None,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.event_hook = event_hook

    def build_command(self, image_path: Path | None = None) -> list[str]:
        if image_path is None:
            return [self.binary, "--stdin-image"]
        return [self.binary, str(image_path)]

    async def recognize_bytes(self, png_bytes: bytes) -> list[RecognizedText]:
        output = await run_helper(
            "recognition",
            self.build_command(),
            stdin_bytes=png_bytes,
            timeout_seconds=self.timeout_seconds,
            event_hook=self.event_hook,
        )
        return parse_recognition_output(output.stdout)

    async def recognize_path(self, image_path: Path) -> list[RecognizedText]:
        output = await run_helper(
            "recognition",
            self.build_command(image_path),
            timeout_seconds=self.timeout_seconds,
            event_hook=self.event_hook,
        )
        return parse_recognition_output(output.stdout)
