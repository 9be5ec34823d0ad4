from __future__ import annotations

import asyncio
import itertools
import logging
from time import perf_counter
from typing import Callable, Optional, Sequence

from quizshot.config.schema import CaptureConfig
from quizshot.errors import CaptureError, ResourceNotReadyError
from quizshot.subtitles.models import SubtitleEntry
from quizshot.utils.logger import get_child

from .capture import CaptureJob
from .models import BatchOutcome, BatchRun, CaptureFailure, CaptureResult
from .source import VideoSource
from .store import ImageStore

# 运行序号单调递增，与源索引组合成结果 id
_RUN_SEQ = itertools.count(1)

ProgressCallback = Callable[[float], None]
ResultCallback = Callable[[CaptureResult], None]


async def wait_until_ready(source: VideoSource, timeout: float) -> None:
    """等待视频资源就绪（时长已知且画面尺寸非零），超时或出错抛出 ResourceNotReadyError。"""
    if source.ready:
        return
    loop = asyncio.get_running_loop()
    outcome: asyncio.Future[None] = loop.create_future()

    def on_ready(*_: object) -> None:
        if outcome.done():
            return
        if source.ready:
            outcome.set_result(None)
        else:
            outcome.set_exception(ResourceNotReadyError("视频尺寸或时长无效"))

    def on_error(exc: object = None) -> None:
        if not outcome.done():
            detail = f"：{exc}" if exc else ""
            outcome.set_exception(ResourceNotReadyError(f"视频加载失败{detail}"))

    source.add_listener("ready", on_ready)
    source.add_listener("error", on_error)
    try:
        await asyncio.wait_for(outcome, timeout=timeout)
    except asyncio.TimeoutError:
        raise ResourceNotReadyError(f"视频加载超时（{timeout:g}s）") from None
    finally:
        source.remove_listener("ready", on_ready)
        source.remove_listener("error", on_error)


class BatchOrchestrator:
    """按题目顺序串行执行截帧任务。

    - 开始前等待视频就绪，超时则整次运行中止；
    - 任务严格串行（视频只有一个位置，并发寻址会互相竞争）；
      除第一个外，每次寻址前停顿 `settle_delay_sec`，让资源在上一次解码后稳定下来；
    - 单个任务失败只记录错误并继续下一条；每次尝试后（无论成败）上报进度；
    - 运行期间独占视频的寻址权。
    """

    def __init__(self, cfg: CaptureConfig, store: ImageStore, *, logger: Optional[logging.Logger] = None) -> None:
        self.cfg = cfg
        self.store = store
        self.logger = logger or logging.getLogger("quizshot.orchestrator")

    async def run(
        self,
        source: VideoSource,
        entries: Sequence[SubtitleEntry],
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
        run_id: Optional[str] = None,
    ) -> BatchRun:
        if not entries:
            raise ValueError("时间点列表为空")

        run_seq = next(_RUN_SEQ)
        run = BatchRun(run_id=run_id or f"run{run_seq:04d}", targets=list(entries))
        run_store = self.store.for_run(run.run_id)
        self.logger.info("截图任务开始", extra={"run_id": run.run_id, "total": run.total})

        await wait_until_ready(source, self.cfg.ready_timeout_sec)

        job_logger = get_child(self.logger, "capture")
        t0 = perf_counter()
        try:
            with source.claim(run):
                for i, entry in enumerate(run.targets):
                    if i > 0 and self.cfg.settle_delay_sec > 0:
                        await asyncio.sleep(self.cfg.settle_delay_sec)
                    job = CaptureJob(
                        source,
                        entry.time_in_seconds,
                        i,
                        store=run_store,
                        run_seq=run_seq,
                        owner=run,
                        seek_timeout_sec=self.cfg.seek_timeout_sec,
                        compression_level=self.cfg.png_compression_level,
                        logger=job_logger,
                    )
                    try:
                        result = await job.run()
                    except CaptureError as e:
                        failure = CaptureFailure(
                            source_timestamp=entry.raw_timestamp,
                            time_in_seconds=entry.time_in_seconds,
                            kind=type(e).__name__,
                            message=str(e),
                        )
                        run.failures.append(failure)
                        self.logger.warning("截图失败", extra={
                            "run_id": run.run_id,
                            "index": i,
                            "timestamp_sec": entry.time_in_seconds,
                            "error": f"{failure.kind}: {failure.message}",
                        })
                    else:
                        run.results.append(result)
                        if on_result is not None:
                            on_result(result)
                    run.completed = i + 1
                    if on_progress is not None:
                        on_progress(run.progress)
        except asyncio.CancelledError:
            released = run.release()
            run.outcome = BatchOutcome.CANCELLED
            self.logger.info("截图任务已取消", extra={"run_id": run.run_id, "released": released})
            raise
        except BaseException as e:
            # 异常中止时已产出的截图不会移交给导出管理器，在此释放
            released = run.release()
            self.logger.error("截图任务异常中止", extra={
                "run_id": run.run_id,
                "released": released,
                "error": f"{type(e).__name__}: {e}",
            })
            raise

        outcome = run.finish()
        self.logger.info("截图任务结束", extra={
            "run_id": run.run_id,
            "status": outcome.value,
            "succeeded": len(run.results),
            "failed": len(run.failures),
            "cost_ms": int((perf_counter() - t0) * 1000),
        })
        return run
