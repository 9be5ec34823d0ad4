from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone, timedelta
from pathlib import Path

# 日志时间统一使用东八区
_TZ8 = timezone(timedelta(hours=8))
_RUN_PREFIX = "quizshot.run."

_STANDARD_ATTRS = {
    "args", "msg", "name", "levelno", "levelname", "created", "msecs",
    "relativeCreated", "pathname", "filename", "module", "lineno",
    "funcName", "exc_info", "exc_text", "stack_info", "thread",
    "threadName", "processName", "process", "taskName", "message", "asctime",
}


def _format_time(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=_TZ8).strftime("%Y-%m-%d %H:%M:%S")


def _extras(record: logging.LogRecord) -> dict[str, object]:
    """收集用户通过 extra 传入的字段；缺少 run_id 时从 logger 名（quizshot.run.{run_id}）提取。"""
    extras: dict[str, object] = {}
    for k, v in record.__dict__.items():
        if k in _STANDARD_ATTRS or k.startswith("_"):
            continue
        extras[k] = v
    if "run_id" not in extras and record.name.startswith(_RUN_PREFIX):
        rest = record.name[len(_RUN_PREFIX):]
        run_id = rest.split(".")[0] if rest else None
        if run_id:
            extras["run_id"] = run_id
    return extras


class JsonFormatter(logging.Formatter):
    """将日志格式化为 JSON 行，便于审计与检索。

    输出字段：时间、级别、logger 名称、消息、以及 extra 中的字段（如 run_id、index、timestamp_sec）。
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: dict[str, object] = {
            "time": _format_time(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """将日志格式化为简洁的人类可读文本（控制台）。

    基本格式："<time> <level> <message> | k=v ..."；
    常用字段按固定顺序在前，文件路径仅展示文件名以避免过长。
    """

    _KEY_ORDER = [
        "run_id", "index", "timestamp_sec", "image", "progress", "status",
        "completed", "total", "succeeded", "failed", "cost_ms", "video",
        "subtitle", "archive", "error",
    ]

    @staticmethod
    def _basename(v: object) -> object:
        if isinstance(v, str) and ("/" in v or "\\" in v):
            return Path(v).name
        return v

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = f"{_format_time(record)} {record.levelname} {record.getMessage()}"
        extras = _extras(record)

        parts: list[str] = []
        for key in self._KEY_ORDER:
            if extras.get(key) not in (None, ""):
                parts.append(f"{key}={self._basename(extras[key])}")
        for k, v in extras.items():
            if k not in self._KEY_ORDER and v not in (None, ""):
                parts.append(f"{k}={self._basename(v)}")

        line = f"{base} | {' '.join(parts)}" if parts else base
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def init_run_logger(run_id: str, logs_root: Path, *, level: int = logging.INFO,
                    json_file: bool = False) -> logging.Logger:
    """初始化运行级别 logger。

    - 控制台使用 PlainFormatter；
    - 文件 `logs_root/{run_id}/run.log` 默认同样为简洁文本，`json_file=True` 时改为 JSON 行。
    """
    logger = logging.getLogger(f"{_RUN_PREFIX}{run_id}")
    logger.setLevel(level)
    logger.propagate = False

    # 若已初始化则直接返回
    if logger.handlers:
        return logger

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(level)
    sh.setFormatter(PlainFormatter())
    logger.addHandler(sh)

    log_dir = Path(logs_root) / run_id
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "run.log", encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(JsonFormatter() if json_file else PlainFormatter())
    logger.addHandler(fh)

    return logger


def close_run_logger(logger: logging.Logger) -> None:
    """关闭并移除运行 logger 的全部 handler（释放日志文件句柄）。"""
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def get_child(logger: logging.Logger, name: str) -> logging.Logger:
    """基于运行 logger 创建子 logger。"""
    return logging.getLogger(f"{logger.name}.{name}")
