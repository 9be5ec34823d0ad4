from __future__ import annotations

import asyncio
import io
import logging
import math
from enum import Enum
from time import perf_counter
from typing import Optional

from PIL import Image

from quizshot.errors import (
    EncodeError,
    OutOfRangeError,
    QuizShotError,
    ResourceError,
    SeekTimeoutError,
)

from .models import CaptureResult
from .source import VideoSource
from .store import ImageStore

log = logging.getLogger("quizshot.capture")


class CaptureState(str, Enum):
    PENDING = "pending"
    SEEKING = "seeking"
    RENDERING = "rendering"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def format_timestamp(seconds: float) -> str:
    """秒数格式化为 HH:MM:SS,mmm（毫秒向下取整）。"""
    total_ms = int(math.floor(max(0.0, float(seconds)) * 1000 + 1e-6))
    hh = total_ms // 3_600_000
    mm = (total_ms % 3_600_000) // 60_000
    ss = (total_ms % 60_000) // 1_000
    ms = total_ms % 1_000
    return f"{hh:02d}:{mm:02d}:{ss:02d},{ms:03d}"


def build_filename(index: int, display_timestamp: str) -> str:
    """`screenshot_{序号三位补零}_{时间戳，冒号换成连字符}.png`，序号从 1 开始。"""
    return f"screenshot_{index + 1:03d}_{display_timestamp.replace(':', '-')}.png"


def encode_png(image: Image.Image, compression_level: int = 6) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG", compress_level=compression_level)
    return buf.getvalue()


class CaptureJob:
    """单个时间点的截帧任务：寻址 → 等待完成或超时 → 渲染 → 编码。

    状态流转：
    - Pending → Seeking → Rendering → Succeeded
    - Pending → Seeking → Failed（超时 / 资源错误）
    - Rendering → Failed（编码失败）

    寻址期间注册的监听在任何退出路径上都会移除，避免多个任务共用同一资源时遗留回调。
    超时后资源的实际位置不确定，调用方不应假设其稳定。
    """

    def __init__(
        self,
        source: VideoSource,
        time_in_seconds: float,
        index: int,
        *,
        store: ImageStore,
        run_seq: int,
        owner: Optional[object] = None,
        seek_timeout_sec: float = 5.0,
        compression_level: int = 6,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.source = source
        self.time_in_seconds = float(time_in_seconds)
        self.index = index
        self.store = store
        self.run_seq = run_seq
        self.owner = owner
        self.seek_timeout_sec = seek_timeout_sec
        self.compression_level = compression_level
        self.logger = logger or log
        self.state = CaptureState.PENDING

    def _fail(self, exc: QuizShotError) -> QuizShotError:
        self.state = CaptureState.FAILED
        return exc

    async def run(self) -> CaptureResult:
        t = self.time_in_seconds
        duration = self.source.duration
        if duration is not None and t > duration:
            raise self._fail(OutOfRangeError(
                f"时间点 {t:.3f}s 超出视频时长 {duration:.3f}s", time_in_seconds=t,
            ))

        t0 = perf_counter()
        await self._seek()
        image = self._render()
        data = await self._encode(image)

        display = format_timestamp(t)
        filename = build_filename(self.index, display)
        try:
            handle = self.store.put(filename, data)
        except OSError as e:
            raise self._fail(EncodeError(f"截图暂存失败：{e}", time_in_seconds=t)) from e
        self.state = CaptureState.SUCCEEDED
        self.logger.debug("截图完成", extra={
            "index": self.index,
            "timestamp_sec": t,
            "image": filename,
            "cost_ms": int((perf_counter() - t0) * 1000),
        })
        return CaptureResult(
            id=f"{self.run_seq}_{self.index}",
            source_time_in_seconds=t,
            display_timestamp=display,
            filename=filename,
            image=handle,
        )

    async def _seek(self) -> None:
        """发起寻址并等待唯一结果：完成 / 超时 / 资源错误。"""
        self.state = CaptureState.SEEKING
        t = self.time_in_seconds
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[None] = loop.create_future()

        def on_seeked(*_: object) -> None:
            if not outcome.done():
                outcome.set_result(None)

        def on_error(exc: object = None) -> None:
            if not outcome.done():
                detail = f"：{exc}" if exc else ""
                outcome.set_exception(ResourceError(f"视频寻址出错{detail}", time_in_seconds=t))

        self.source.add_listener("seeked", on_seeked)
        self.source.add_listener("error", on_error)
        try:
            try:
                self.source.seek(t, owner=self.owner)
            except QuizShotError as e:
                raise ResourceError(f"无法寻址：{e}", time_in_seconds=t) from e
            await asyncio.wait_for(outcome, timeout=self.seek_timeout_sec)
        except asyncio.TimeoutError:
            raise self._fail(SeekTimeoutError(f"寻址超时：{t:.3f}s", time_in_seconds=t)) from None
        except ResourceError as e:
            raise self._fail(e)
        finally:
            self.source.remove_listener("seeked", on_seeked)
            self.source.remove_listener("error", on_error)

    def _render(self) -> Image.Image:
        """同步渲染当前帧到与视频原始尺寸一致的离屏画布。"""
        self.state = CaptureState.RENDERING
        try:
            frame = self.source.render_frame()
        except ResourceError as e:
            raise self._fail(e)
        except (OSError, RuntimeError, ValueError) as e:
            raise self._fail(ResourceError(f"渲染画面失败：{e}", time_in_seconds=self.time_in_seconds)) from e
        size = (self.source.width, self.source.height)
        surface = Image.new("RGB", size)
        if frame.size != size:
            frame = frame.resize(size, Image.LANCZOS)
        surface.paste(frame.convert("RGB"), (0, 0))
        return surface

    async def _encode(self, image: Image.Image) -> bytes:
        t = self.time_in_seconds
        try:
            data = await asyncio.to_thread(encode_png, image, self.compression_level)
        except (OSError, ValueError) as e:
            raise self._fail(EncodeError(f"图片编码失败：{e}", time_in_seconds=t)) from e
        if not data:
            raise self._fail(EncodeError("图片编码结果为空", time_in_seconds=t))
        return data
