from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from conductor.helpers.base import HelperError, HelperEventHook, run_helper


@dataclass(slots=True)
class CapturedFrame:
    path: Path
    png_bytes: bytes


class CaptureHelper:
    def __init__(
        self,
        binary: str = "conductor-capture",
        timeout_seconds: float | None = None,
        event_hook: HelperEventHook | None = None,
    ) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.event_hook = event_hook

    def build_command(self, output_path: Path) -> list[str]:
        return [self.binary, str(output_path)]

    async def capture(self, output_path: Path) -> CapturedFrame:
        await run_helper(
            "capture",
            self.build_command(output_path),
            timeout_seconds=self.timeout_seconds,
            event_hook=self.event_hook,
        )
        try:
            png_bytes = output_path.read_bytes()
        except FileNotFoundError as exc:
            raise HelperError(
                f"capture helper exited cleanly but wrote no image at {output_path}",
                helper="capture",
            ) from exc
        if not png_bytes:
            raise HelperError(
                f"capture helper wrote an empty image at {output_path}", helper="capture"
            )
        return CapturedFrame(path=output_path, png_bytes=png_bytes)
