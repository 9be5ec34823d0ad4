"""截帧流水线的异常分类。

- 单个截帧任务的失败均继承 `CaptureError`，由编排器收集后继续下一条；
- `ResourceNotReadyError` 为整次运行级别的致命错误；
- 导出相关失败继承 `ExportError`，由导出管理器降级为逐张保存。
"""

from __future__ import annotations

from typing import Optional


class QuizShotError(Exception):
    """所有业务异常的基类。"""


class ParseSkip(QuizShotError):
    """字幕块中没有时间戳行，解析时静默跳过（不对外暴露）。"""


class CaptureError(QuizShotError):
    """单个时间点截帧失败。"""

    def __init__(self, message: str, *, time_in_seconds: Optional[float] = None) -> None:
        super().__init__(message)
        self.time_in_seconds = time_in_seconds


class OutOfRangeError(CaptureError):
    """时间点超出视频时长，未发起寻址。"""


class SeekTimeoutError(CaptureError):
    """寻址等待超时；视频实际位置不确定。"""


class ResourceError(CaptureError):
    """视频资源在寻址或渲染期间报告错误。"""


class EncodeError(CaptureError):
    """帧编码为图片失败或输出为空。"""


class ResourceNotReadyError(QuizShotError):
    """视频资源在限定时间内未就绪，整次运行中止。"""


class ResourceBusyError(QuizShotError):
    """视频位置已被其他持有者占用（运行期间仅编排器可寻址）。"""


class ExportError(QuizShotError):
    """导出失败的基类。"""


class ArchiveUnavailableError(ExportError):
    """打包或保存能力不可用，触发逐张导出。"""


class FetchError(ExportError):
    """读取截图数据失败（句柄已释放或文件丢失）。"""
