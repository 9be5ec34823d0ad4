"""共享视频资源的抽象。

视频资源只有一个可变的播放位置，由预览与截帧共同使用；
系统内同一时刻最多只允许一次未完成的寻址。
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Dict, Generator, List, Optional

from PIL import Image

from quizshot.errors import ResourceBusyError

log = logging.getLogger("quizshot.source")

Listener = Callable[..., None]


class VideoSource:
    """视频资源基类。

    信号：
    - "ready"：时长与画面尺寸已知；
    - "seeked"：寻址完成，可渲染当前帧；
    - "error"：资源报告错误（参数为异常对象）。

    运行期间编排器通过 `claim(owner)` 获得独占的寻址权，其他调用方的 `seek` 会被拒绝。
    """

    EVENTS = ("ready", "seeked", "error")

    def __init__(self) -> None:
        self.duration: Optional[float] = None
        self.width: int = 0
        self.height: int = 0
        self._position: float = 0.0
        self._listeners: Dict[str, List[Listener]] = {e: [] for e in self.EVENTS}
        self._writer: Optional[object] = None

    # === 状态 ===
    @property
    def ready(self) -> bool:
        return self.duration is not None and self.width > 0 and self.height > 0

    @property
    def position(self) -> float:
        return self._position

    @property
    def writer(self) -> Optional[object]:
        return self._writer

    # === 信号 ===
    def add_listener(self, event: str, callback: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"未知事件：{event}")
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Listener) -> None:
        try:
            self._listeners[event].remove(callback)
        except (KeyError, ValueError):
            pass

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(v) for v in self._listeners.values())

    def _emit(self, event: str, *args: object) -> None:
        # 复制一份，回调中移除监听不影响本次分发
        for cb in list(self._listeners[event]):
            cb(*args)

    # === 寻址 ===
    @contextmanager
    def claim(self, owner: object) -> Generator[None, None, None]:
        """在 with 范围内把寻址权独占给 owner。"""
        if self._writer is not None and self._writer is not owner:
            raise ResourceBusyError("视频位置已被占用")
        self._writer = owner
        try:
            yield
        finally:
            self._writer = None

    def seek(self, time_in_seconds: float, *, owner: Optional[object] = None) -> None:
        """请求移动播放位置；完成后发出 "seeked"，失败发出 "error"。"""
        if self._writer is not None and owner is not self._writer:
            raise ResourceBusyError("截图进行中，暂不允许移动视频位置")
        self._position = float(time_in_seconds)
        log.debug("请求寻址", extra={"timestamp_sec": self._position})
        self._request_seek(self._position)

    # === 子类实现 ===
    def load(self) -> None:
        """开始加载资源；就绪后发出 "ready"。"""
        raise NotImplementedError

    def _request_seek(self, time_in_seconds: float) -> None:
        raise NotImplementedError

    def render_frame(self) -> Image.Image:
        """同步返回当前位置的画面。"""
        raise NotImplementedError

    def release(self) -> None:
        """释放资源自身持有的临时句柄。"""
        for listeners in self._listeners.values():
            listeners.clear()
