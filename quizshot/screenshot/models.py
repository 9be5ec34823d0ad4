from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from quizshot.subtitles.models import SubtitleEntry

from .store import ImageHandle


class CaptureResult(BaseModel):
    """单个时间点的截帧结果。"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(description="运行内唯一标识（运行序号 + 源索引），选择状态以此为键")
    source_time_in_seconds: float = Field(ge=0)
    display_timestamp: str = Field(description="由秒数重新格式化的 HH:MM:SS,mmm")
    filename: str
    image: ImageHandle


class CaptureFailure(BaseModel):
    """单个时间点截帧失败的记录。"""

    source_timestamp: str = Field(description="原始时间戳行")
    time_in_seconds: float
    kind: str = Field(description="异常类型名")
    message: str

    def describe(self) -> str:
        return f"截图失败：{self.source_timestamp}（{self.message}）"


class BatchOutcome(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    EMPTY = "empty"
    CANCELLED = "cancelled"


@dataclass
class BatchRun:
    """一次编排运行的临时聚合。

    新运行开始或使用方销毁时丢弃，并释放其持有的全部截图句柄。
    """

    run_id: str
    targets: List[SubtitleEntry]
    completed: int = 0
    results: List[CaptureResult] = field(default_factory=list)
    failures: List[CaptureFailure] = field(default_factory=list)
    outcome: Optional[BatchOutcome] = None

    @property
    def total(self) -> int:
        return len(self.targets)

    @property
    def progress(self) -> float:
        if not self.targets:
            return 0.0
        return min(1.0, self.completed / len(self.targets))

    @property
    def errors(self) -> List[str]:
        return [f.describe() for f in self.failures]

    def finish(self) -> BatchOutcome:
        """根据成功数量判定聚合结果。"""
        if not self.results:
            self.outcome = BatchOutcome.EMPTY
        elif len(self.results) < self.total:
            self.outcome = BatchOutcome.PARTIAL
        else:
            self.outcome = BatchOutcome.COMPLETE
        return self.outcome

    def summary(self) -> Optional[str]:
        """聚合提示（与逐条错误分开展示）；全部成功时为 None。"""
        if self.outcome == BatchOutcome.EMPTY:
            return "未能成功截取任何截图"
        if self.outcome == BatchOutcome.PARTIAL:
            return f"仅成功截取 {len(self.results)}/{self.total} 张截图"
        if self.outcome == BatchOutcome.CANCELLED:
            return "截图任务已取消"
        return None

    def release(self) -> int:
        """释放全部截图句柄，返回本次实际释放的数量。"""
        return sum(1 for r in self.results if r.image.release())
