from __future__ import annotations

import importlib.util
import io
import logging
import os
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Protocol, Tuple

log = logging.getLogger("quizshot.export")

SCOPE_SELECTED = "screenshots"
SCOPE_ALL = "all_screenshots"


class Saver(Protocol):
    """保存触发能力：把一段数据以给定文件名交付给用户。"""

    def available(self) -> bool: ...

    def save(self, data: bytes, filename: str) -> Path: ...


@dataclass(frozen=True)
class Capabilities:
    """可选能力标记：启动时探测一次并缓存，导出时只做分支判断。"""

    archive: bool
    save: bool

    @property
    def bulk(self) -> bool:
        return self.archive and self.save


def archive_supported() -> bool:
    """zip 打包需要 zlib（ZIP_DEFLATED）。"""
    return importlib.util.find_spec("zlib") is not None


def probe_capabilities(saver: Saver) -> Capabilities:
    caps = Capabilities(archive=archive_supported(), save=saver.available())
    if not caps.bulk:
        log.warning("打包下载能力不可用，将逐张导出", extra={"archive_ok": caps.archive, "save_ok": caps.save})
    return caps


def archive_name(scope: str, now: Optional[datetime] = None) -> str:
    """`{scope}_{ISO-8601 时间（冒号换成连字符）}.zip`，精确到秒。"""
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M:%S").replace(":", "-")
    return f"{scope}_{stamp}.zip"


def build_archive(items: Iterable[Tuple[str, bytes]]) -> bytes:
    """每个 (文件名, 数据) 写为一个 zip 条目。"""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in items:
            zf.writestr(name, data)
    return buf.getvalue()


class DirectorySaver:
    """保存到本地目录；同名文件追加 ` (n)` 后缀，不覆盖已有文件。"""

    def __init__(self, dest_dir: str | Path) -> None:
        self.dest_dir = Path(dest_dir)

    def retarget(self, dest_dir: str | Path) -> None:
        """更换导出目录，之后的保存写入新目录。"""
        self.dest_dir = Path(dest_dir)

    def available(self) -> bool:
        try:
            self.dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(self.dest_dir, os.W_OK)

    def _free_path(self, filename: str) -> Path:
        p = self.dest_dir / filename
        n = 1
        while p.exists():
            p = self.dest_dir / f"{Path(filename).stem} ({n}){Path(filename).suffix}"
            n += 1
        return p

    def save(self, data: bytes, filename: str) -> Path:
        self.dest_dir.mkdir(parents=True, exist_ok=True)
        p = self._free_path(filename)
        p.write_bytes(data)
        log.info("文件已保存", extra={"path": str(p), "bytes": len(data)})
        return p
