from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class CaptureConfig(BaseModel):
    """截帧与编排配置。"""

    ffmpeg_path: str = Field(default="ffmpeg", description="ffmpeg 可执行文件路径")
    ffprobe_path: str = Field(default="ffprobe", description="ffprobe 可执行文件路径")
    # 硬件加速（可选）：例如 cuda/qsv/dxva2/d3d11va/vaapi 等；默认不启用
    hwaccel: Optional[str] = Field(default=None,
                                   description="ffmpeg -hwaccel 参数（如 cuda/qsv/dxva2/vaapi），默认 None 关闭")
    hwaccel_device: Optional[str] = Field(default=None,
                                          description="ffmpeg -hwaccel_device（如 cuda:0 或 /dev/dri/renderD128），默认 None")
    question_token: str = Field(default="question", min_length=1, description="题目标记（不区分大小写的子串匹配）")
    ready_timeout_sec: float = Field(default=10.0, gt=0, description="等待视频就绪的超时（秒），超时中止整次运行")
    seek_timeout_sec: float = Field(default=5.0, gt=0, description="单次寻址等待超时（秒）")
    settle_delay_sec: float = Field(default=0.1, ge=0, description="相邻两次寻址之间的停顿（秒）")
    pre_seek_window_sec: float = Field(default=5.0, ge=0, description="双阶段寻址的粗跳提前量（秒）")
    png_compression_level: int = Field(
        default=6,
        ge=0,
        le=9,
        description="PNG 压缩等级，0 为最快、9 为最小体积（仍保持无损）",
    )


class ExportConfig(BaseModel):
    """导出与目录配置。"""

    outputs_root: Path = Field(default=Path("outputs"), description="导出目录（压缩包与单张截图）")
    logs_root: Path = Field(default=Path("logs"), description="日志根目录")
    spool_root: Optional[Path] = Field(default=None, description="截图暂存目录，None 使用系统临时目录")
    stagger_delay_sec: float = Field(default=0.5, ge=0, description="逐张导出时相邻两张的间隔（秒）")

    @field_validator("outputs_root", "logs_root")
    @classmethod
    def _ensure_dir(cls, v: Path) -> Path:
        v.mkdir(parents=True, exist_ok=True)
        return v


class AppConfig(BaseModel):
    """
    应用总配置（支持 cache.json 记忆）。
    """

    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
