from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional

from quizshot.config.schema import AppConfig
from quizshot.errors import ResourceNotReadyError
from quizshot.export.archive import Capabilities, DirectorySaver, Saver
from quizshot.export.selection import ExportManager
from quizshot.screenshot.ffmpeg import FFmpegVideoSource
from quizshot.screenshot.models import BatchRun, CaptureResult
from quizshot.screenshot.orchestrator import BatchOrchestrator
from quizshot.screenshot.source import VideoSource
from quizshot.screenshot.store import ImageStore
from quizshot.subtitles.loader import load_questions
from quizshot.subtitles.models import SubtitleEntry
from quizshot.utils.hash import hash_run
from quizshot.utils.logger import close_run_logger, init_run_logger

SourceFactory = Callable[[Path], VideoSource]


class CaptureSession:
    """一次使用会话：持有视频资源、题目列表、当前运行与导出管理器。

    - 开始新运行时中止并释放仍在进行的旧运行（视频只允许一个写入者）；
    - 结果集移交给导出管理器，由其负责句柄释放；
    - `close()` 释放全部截图句柄、视频资源与暂存目录，多次调用无副作用。
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        saver: Optional[Saver] = None,
        source_factory: Optional[SourceFactory] = None,
        capabilities: Optional[Capabilities] = None,
    ) -> None:
        self.cfg = cfg
        self.saver = saver if saver is not None else DirectorySaver(cfg.export.outputs_root)
        self._source_factory = source_factory or (lambda p: FFmpegVideoSource(p, cfg.capture))
        self.store = ImageStore(cfg.export.spool_root)
        self.exports = ExportManager(
            self.saver,
            capabilities=capabilities,
            stagger_delay_sec=cfg.export.stagger_delay_sec,
        )
        self.logger = logging.getLogger("quizshot.session")

        self.source: Optional[VideoSource] = None
        self.video_path: Optional[Path] = None
        self.subtitle_path: Optional[Path] = None
        self.questions: List[SubtitleEntry] = []
        self.run: Optional[BatchRun] = None
        self.errors: List[str] = []

        self._task: Optional[asyncio.Task] = None
        self._aborted: set[asyncio.Task] = set()
        self._generation = 0
        self._closed = False

    # === 状态 ===
    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def can_generate(self) -> bool:
        return self.source is not None and bool(self.questions) and not self.busy and not self._closed

    # === 输入 ===
    def load_video(self, path: str | Path) -> VideoSource:
        if self.busy:
            raise RuntimeError("截图进行中，无法更换视频")
        if self.source is not None:
            self.source.release()
        self.video_path = Path(path)
        self.source = self._source_factory(self.video_path)
        self.errors = []
        self.logger.info("视频已选择", extra={"video": str(self.video_path)})
        return self.source

    def load_subtitle(self, path: str | Path) -> List[SubtitleEntry]:
        self.subtitle_path = Path(path)
        token = self.cfg.capture.question_token
        self.questions = load_questions(self.subtitle_path, token)
        self.errors = [] if self.questions else [f"字幕中未找到包含 “{token}” 的时间点"]
        self.logger.info("字幕已加载", extra={
            "subtitle": str(self.subtitle_path),
            "questions": len(self.questions),
        })
        return self.questions

    def set_output_dir(self, path: str | Path) -> None:
        """更新导出目录配置；默认的目录保存器随之改写到新目录。"""
        self.cfg.export.outputs_root = Path(path)
        if isinstance(self.saver, DirectorySaver):
            self.saver.retarget(path)
        self.logger.info("导出目录已更新", extra={"path": str(path)})

    # === 运行 ===
    def _next_run_id(self) -> str:
        self._generation += 1
        params = self.cfg.capture.model_dump(mode="json")
        prefix = hash_run(self.video_path or "", self.subtitle_path or "", params)
        return f"{prefix}_{self._generation:02d}"

    async def generate(
        self,
        *,
        on_progress: Optional[Callable[[float], None]] = None,
        on_result: Optional[Callable[[CaptureResult], None]] = None,
    ) -> Optional[BatchRun]:
        """为全部题目时间点截图；运行级失败转为一条错误信息并返回 None。"""
        if self._closed:
            raise RuntimeError("会话已关闭")
        if self.source is None or not self.questions:
            self.errors = ["请先加载视频与包含题目时间点的字幕"]
            return None

        await self.abort()
        self.exports.adopt([])
        self.run = None
        self.errors = []

        run_id = self._next_run_id()
        logger = init_run_logger(run_id, self.cfg.export.logs_root)
        logger.info("截图生成开始", extra={
            "video": str(self.video_path),
            "subtitle": str(self.subtitle_path),
            "total": len(self.questions),
        })
        orchestrator = BatchOrchestrator(self.cfg.capture, self.store, logger=logger)
        if not self.source.ready:
            self.source.load()

        task = asyncio.ensure_future(orchestrator.run(
            self.source,
            self.questions,
            on_progress=on_progress,
            on_result=on_result,
            run_id=run_id,
        ))
        self._task = task
        try:
            run = await task
        except ResourceNotReadyError as e:
            self.errors = [f"截图生成失败：{e}"]
            logger.error("截图生成失败", extra={"error": str(e)})
            return None
        except asyncio.CancelledError:
            if task in self._aborted:
                self._aborted.discard(task)
                return None
            raise
        finally:
            if self._task is task:
                self._task = None
            close_run_logger(logger)

        self.run = run
        self.exports.adopt(run.results)
        summary = run.summary()
        self.errors = run.errors + ([summary] if summary else [])
        return run

    async def abort(self) -> None:
        """中止进行中的运行；已产出的截图由编排器释放。"""
        task = self._task
        if task is None or task.done():
            return
        self._aborted.add(task)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("上一次截图任务已中止")

    def request_abort(self) -> None:
        """线程安全地请求中止（供 GUI 主线程调用）。"""
        task = self._task
        if task is None or task.done():
            return
        self._aborted.add(task)
        task.get_loop().call_soon_threadsafe(task.cancel)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.request_abort()
        self.exports.close()
        if self.source is not None:
            self.source.release()
            self.source = None
        self.store.cleanup()
        self.logger.info("会话已关闭")
