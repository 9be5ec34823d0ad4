from __future__ import annotations

import asyncio
import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

from PIL import Image

from quizshot.config.schema import CaptureConfig
from quizshot.errors import ResourceError

from .source import VideoSource

log = logging.getLogger("quizshot.ffmpeg")


class FFmpegVideoSource(VideoSource):
    """基于 ffprobe/ffmpeg 的视频资源。

    - `load()` 异步探测时长与画面尺寸，完成后发出 "ready"；
    - 每次寻址用 ffmpeg 解码目标时间的一帧（rgb24 原始像素，经 stdout 读取），
      完成后发出 "seeked"；命令失败或帧数据不完整时发出 "error"；
    - 若 ffmpeg/ffprobe 不存在或命令失败，只通过 "error" 信号报告（不兜底）。

    寻址策略：使用“快+准双 -ss”（先前置粗跳、再后置精确寻址）以兼顾性能与帧精度。
    """

    def __init__(self, video: str | Path, cfg: CaptureConfig) -> None:
        super().__init__()
        self.video = Path(video)
        self.cfg = cfg
        self._frame: Optional[bytes] = None
        self._frame_size: tuple[int, int] = (0, 0)
        self._pending: Optional[asyncio.Task] = None

    def _hwaccel_args(self) -> list[str]:
        args: list[str] = []
        # 硬件加速参数（可选）：只有在配置提供时才附加
        if self.cfg.hwaccel:
            args += ["-hwaccel", str(self.cfg.hwaccel)]
            if self.cfg.hwaccel_device:
                args += ["-hwaccel_device", str(self.cfg.hwaccel_device)]
        return args

    # === 探测 ===
    def _probe_cmd(self) -> list[str]:
        return [
            self.cfg.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height:format=duration",
            "-of", "json",
            str(self.video),
        ]

    def _probe(self) -> tuple[float, int, int]:
        res = subprocess.run(self._probe_cmd(), capture_output=True, text=True)
        if res.returncode != 0:
            raise RuntimeError(f"ffprobe 探测失败：{res.stderr}")
        data = json.loads(res.stdout or "{}")
        streams = data.get("streams") or []
        if not streams:
            raise RuntimeError(f"未找到视频流：{self.video}")
        width = int(streams[0].get("width") or 0)
        height = int(streams[0].get("height") or 0)
        duration_raw = (data.get("format") or {}).get("duration")
        if duration_raw is None:
            raise RuntimeError(f"无法获取视频时长：{self.video}")
        return float(duration_raw), width, height

    def load(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.create_task(self._open())

    async def _open(self) -> None:
        try:
            duration, width, height = await asyncio.to_thread(self._probe)
        except (OSError, RuntimeError, ValueError) as e:
            log.warning("视频探测失败", extra={"video": str(self.video), "error": str(e)})
            self._emit("error", e)
            return
        self.duration, self.width, self.height = duration, width, height
        log.info("视频已就绪", extra={
            "video": str(self.video),
            "duration": duration,
            "size": f"{width}x{height}",
        })
        self._emit("ready")

    # === 寻址与解码 ===
    def _decode_cmd(self, ts_sec: float) -> list[str]:
        pre_seek = max(0.0, float(ts_sec) - float(self.cfg.pre_seek_window_sec))
        post_seek = float(ts_sec) - pre_seek
        return [
            self.cfg.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            *self._hwaccel_args(),
            "-ss", f"{pre_seek:.3f}",
            "-i", str(self.video),
            "-ss", f"{post_seek:.3f}",
            "-frames:v", "1",
            "-f", "rawvideo",
            "-pix_fmt", "rgb24",
            "-",
        ]

    def _decode(self, ts_sec: float) -> bytes:
        res = subprocess.run(self._decode_cmd(ts_sec), capture_output=True)
        if res.returncode != 0:
            raise RuntimeError(f"ffmpeg 解码失败：{res.stderr.decode('utf-8', errors='replace')}")
        expected = self.width * self.height * 3
        if len(res.stdout) < expected:
            raise RuntimeError(f"帧数据不完整：{len(res.stdout)}/{expected} 字节")
        return res.stdout[:expected]

    def _request_seek(self, time_in_seconds: float) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.create_task(self._seek(time_in_seconds))

    async def _seek(self, ts_sec: float) -> None:
        try:
            data = await asyncio.to_thread(self._decode, ts_sec)
        except (OSError, RuntimeError) as e:
            self._emit("error", e)
            return
        # 已被更新的寻址取代
        if ts_sec != self.position:
            return
        self._frame = data
        self._frame_size = (self.width, self.height)
        self._emit("seeked")

    def render_frame(self) -> Image.Image:
        if self._frame is None:
            raise ResourceError("当前没有可渲染的画面", time_in_seconds=self.position)
        return Image.frombytes("RGB", self._frame_size, self._frame)

    def release(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self._frame = None
        super().release()
