import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from PIL import Image

# Ensure `import quizshot...` works without an editable install by putting the
# repo root on sys.path.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from quizshot.config.schema import AppConfig, CaptureConfig, ExportConfig  # noqa: E402
from quizshot.screenshot.source import VideoSource  # noqa: E402
from quizshot.subtitles.models import SubtitleEntry  # noqa: E402


class FakeVideoSource(VideoSource):
    """In-memory video source driven by the event loop.

    `behaviors` maps a seek time to "ok" (emit seeked), "error" (emit error)
    or "hang" (never resolve). Unlisted times behave as "ok".
    """

    def __init__(
        self,
        *,
        duration: Optional[float] = 60.0,
        width: int = 64,
        height: int = 36,
        ready: bool = True,
        behaviors: Optional[Dict[float, str]] = None,
        ready_on_load: bool = True,
    ) -> None:
        super().__init__()
        self._spec = (duration, width, height)
        if ready:
            self.duration, self.width, self.height = duration, width, height
        self.behaviors = behaviors or {}
        self.ready_on_load = ready_on_load
        self.seeks: List[float] = []
        self.outstanding = 0
        self.max_outstanding = 0
        self.load_calls = 0
        self.released = 0

    def load(self) -> None:
        self.load_calls += 1
        if not self.ready_on_load:
            return
        loop = asyncio.get_running_loop()

        def _ready():
            self.duration, self.width, self.height = self._spec
            self._emit("ready")

        loop.call_soon(_ready)

    def _request_seek(self, time_in_seconds: float) -> None:
        self.seeks.append(time_in_seconds)
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        behavior = self.behaviors.get(time_in_seconds, "ok")
        if behavior == "hang":
            return
        loop = asyncio.get_running_loop()

        def _resolve():
            self.outstanding -= 1
            if behavior == "error":
                self._emit("error", RuntimeError("decoder failure"))
            else:
                self._emit("seeked")

        loop.call_soon(_resolve)

    def render_frame(self) -> Image.Image:
        shade = int(self.position * 10) % 256
        return Image.new("RGB", (self.width, self.height), (shade, 0, 0))

    def release(self) -> None:
        self.released += 1
        super().release()


class MemorySaver:
    def __init__(self, available: bool = True) -> None:
        self._available = available
        self.saved: List[Tuple[str, bytes]] = []

    def available(self) -> bool:
        return self._available

    def save(self, data: bytes, filename: str) -> Path:
        self.saved.append((filename, data))
        return Path(filename)


def make_entry(seconds: float, text: str = "Question", raw: Optional[str] = None) -> SubtitleEntry:
    return SubtitleEntry(
        raw_timestamp=raw or f"t={seconds}",
        time_in_seconds=seconds,
        text=text,
        is_question=True,
    )


@pytest.fixture
def capture_cfg() -> CaptureConfig:
    return CaptureConfig(ready_timeout_sec=0.5, seek_timeout_sec=0.2, settle_delay_sec=0.0)


@pytest.fixture
def app_cfg(tmp_path, capture_cfg) -> AppConfig:
    return AppConfig(
        capture=capture_cfg,
        export=ExportConfig(
            outputs_root=tmp_path / "outputs",
            logs_root=tmp_path / "logs",
            spool_root=tmp_path / "spool",
            stagger_delay_sec=0.0,
        ),
    )
