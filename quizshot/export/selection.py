from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Generator, Iterable, List, Optional

from quizshot.errors import ArchiveUnavailableError, FetchError
from quizshot.screenshot.models import CaptureResult

from .archive import (
    SCOPE_ALL,
    SCOPE_SELECTED,
    Capabilities,
    Saver,
    archive_name,
    build_archive,
    probe_capabilities,
)


@dataclass
class ExportReport:
    """一次批量导出的结果。"""

    scope: str
    archive_path: Optional[Path] = None
    delivered: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    fell_back: bool = False
    reason: Optional[str] = None


class ExportManager:
    """截图的选择与导出。

    - 选择集合以 CaptureResult.id 为键，始终是当前结果集的子集；更换结果集时清空；
    - 批量导出优先打包为 zip；打包/保存能力不可用或打包过程中出错时，
      降级为逐张保存，相邻两张间隔 `stagger_delay_sec`（同时弹出多个保存请求并不可靠）；
    - 截图句柄归本管理器所有：结果集被替换或 `close()` 时逐一释放；
      正在导出的句柄延后到导出结束再释放。
    """

    def __init__(
        self,
        saver: Saver,
        *,
        capabilities: Optional[Capabilities] = None,
        stagger_delay_sec: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.saver = saver
        self.capabilities = capabilities if capabilities is not None else probe_capabilities(saver)
        self.stagger_delay_sec = stagger_delay_sec
        self.logger = logger or logging.getLogger("quizshot.export")
        self._results: List[CaptureResult] = []
        self._selected: set[str] = set()
        # 正在导出的句柄引用计数，以及等待导出结束后释放的结果
        self._in_flight: Dict[str, int] = {}
        self._retired: Dict[str, CaptureResult] = {}

    # === 结果集 ===
    @property
    def results(self) -> List[CaptureResult]:
        return list(self._results)

    def adopt(self, results: Iterable[CaptureResult]) -> None:
        """接管新的结果集：释放旧结果的句柄并清空选择。"""
        self._retire(self._results)
        self._results = list(results)
        self._selected.clear()

    def close(self) -> None:
        self._retire(self._results)
        self._results = []
        self._selected.clear()

    def _retire(self, results: Iterable[CaptureResult]) -> None:
        for r in results:
            if self._in_flight.get(r.id):
                self._retired[r.id] = r
            else:
                r.image.release()

    @contextmanager
    def _lease(self, items: Iterable[CaptureResult]) -> Generator[None, None, None]:
        ids = [r.id for r in items]
        for rid in ids:
            self._in_flight[rid] = self._in_flight.get(rid, 0) + 1
        try:
            yield
        finally:
            for rid in ids:
                left = self._in_flight[rid] - 1
                if left > 0:
                    self._in_flight[rid] = left
                    continue
                del self._in_flight[rid]
                retired = self._retired.pop(rid, None)
                if retired is not None:
                    retired.image.release()

    # === 选择 ===
    @property
    def selected(self) -> FrozenSet[str]:
        return frozenset(self._selected)

    @property
    def is_all_selected(self) -> bool:
        return bool(self._results) and len(self._selected) == len(self._results)

    def toggle(self, result_id: str) -> bool:
        """切换单张的选中状态，返回切换后是否选中。"""
        if result_id not in {r.id for r in self._results}:
            raise KeyError(f"未知截图：{result_id}")
        if result_id in self._selected:
            self._selected.discard(result_id)
            return False
        self._selected.add(result_id)
        return True

    def toggle_all(self) -> None:
        """已全选时清空，否则全选。"""
        if len(self._selected) == len(self._results):
            self._selected.clear()
        else:
            self._selected = {r.id for r in self._results}

    def selected_results(self) -> List[CaptureResult]:
        return [r for r in self._results if r.id in self._selected]

    # === 导出 ===
    async def export_one(self, result: CaptureResult) -> Path:
        """读取截图数据并按其文件名直接保存。"""
        with self._lease([result]):
            data = await result.image.fetch()
            return await asyncio.to_thread(self.saver.save, data, result.filename)

    async def export_selected(self) -> ExportReport:
        items = self.selected_results()
        if not items:
            raise ValueError("请至少选择一张截图")
        return await self._export_bulk(items, SCOPE_SELECTED)

    async def export_all(self) -> ExportReport:
        if not self._results:
            raise ValueError("没有可导出的截图")
        return await self._export_bulk(list(self._results), SCOPE_ALL)

    async def _export_bulk(self, items: List[CaptureResult], scope: str) -> ExportReport:
        report = ExportReport(scope=scope)
        with self._lease(items):
            try:
                if not self.capabilities.bulk:
                    raise ArchiveUnavailableError("打包下载能力不可用")
                report.archive_path = await self._export_archive(items, scope)
                return report
            except Exception as e:  # noqa: BLE001
                # 打包失败不终止导出，统一降级为逐张保存
                report.fell_back = True
                report.reason = str(e)
                self.logger.warning("打包导出失败，改为逐张导出", extra={
                    "scope": scope,
                    "total": len(items),
                    "error": f"{type(e).__name__}: {e}",
                })
            await self._export_individually(items, report)
        return report

    async def _export_archive(self, items: List[CaptureResult], scope: str) -> Path:
        entries = [(r.filename, await r.image.fetch()) for r in items]
        data = await asyncio.to_thread(build_archive, entries)
        name = archive_name(scope)
        path = await asyncio.to_thread(self.saver.save, data, name)
        self.logger.info("打包导出完成", extra={"scope": scope, "total": len(items), "archive": str(path)})
        return path

    async def _export_individually(self, items: List[CaptureResult], report: ExportReport) -> None:
        for i, r in enumerate(items):
            if i > 0 and self.stagger_delay_sec > 0:
                await asyncio.sleep(self.stagger_delay_sec)
            try:
                report.delivered.append(await self.export_one(r))
            except (FetchError, OSError) as e:
                report.errors.append(f"导出失败：{r.filename}（{e}）")
                self.logger.warning("单张导出失败", extra={"image": r.filename, "error": str(e)})
        self.logger.info("逐张导出完成", extra={
            "scope": report.scope,
            "succeeded": len(report.delivered),
            "failed": len(report.errors),
        })
