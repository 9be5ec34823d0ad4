from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from quizshot.errors import FetchError


class ImageHandle:
    """独占的截图数据句柄（以暂存文件承载）。

    - 所有权随 CaptureResult 移交给导出管理器；
    - `release()` 删除暂存文件，仅首次调用返回 True，保证“只释放一次”；
    - 释放后读取抛出 FetchError。
    """

    def __init__(self, path: Path, filename: str) -> None:
        self.path = Path(path)
        self.filename = filename
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read_bytes(self) -> bytes:
        if self._released:
            raise FetchError(f"截图已释放：{self.filename}")
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise FetchError(f"读取截图失败：{self.filename}，错误：{e}") from e

    async def fetch(self) -> bytes:
        """异步读取数据（在线程中完成文件 IO）。"""
        return await asyncio.to_thread(self.read_bytes)

    def release(self) -> bool:
        if self._released:
            return False
        self._released = True
        self.path.unlink(missing_ok=True)
        return True

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"ImageHandle({self.filename!r}, {state})"


class ImageStore:
    """截图暂存目录。

    - 总是在 `parent`（未指定时为系统临时目录）下新建私有目录，`cleanup()` 只删除该目录；
    - `for_run` 为每次运行在私有目录内再建独立子目录，避免不同运行的同名文件互相覆盖。
    """

    def __init__(self, parent: Optional[Path] = None, *, prefix: str = "quizshot_") -> None:
        if parent is not None:
            Path(parent).mkdir(parents=True, exist_ok=True)
        self.root = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))

    def for_run(self, run_id: str) -> "ImageStore":
        return ImageStore(self.root, prefix=f"{run_id}_")

    def put(self, name: str, data: bytes) -> ImageHandle:
        p = self.root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return ImageHandle(p, name)

    def cleanup(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)
