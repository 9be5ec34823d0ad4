from __future__ import annotations

import logging
import re
from typing import List, Optional

from quizshot.errors import ParseSkip

from .models import SubtitleEntry

log = logging.getLogger("quizshot.subtitles")

DEFAULT_QUESTION_TOKEN = "question"

# 标准形式：HH:MM:SS,mmm 或 HH:MM:SS.mmm（出现在行内任意位置即可）
TIMESTAMP_RE = re.compile(r"(\d{2}):(\d{2}):(\d{2})[,.](\d{3})")
# 紧凑区间形式：MM:SS,mmm --> MM:SS,mmm（无小时字段）
COMPACT_RANGE_RE = re.compile(r"(\d{1,2}):(\d{2}),(\d{3})\s*-->\s*(\d{1,2}):(\d{2}),(\d{3})")
# 空行（含仅空白字符的行）分隔字幕块
_BLOCK_SEP_RE = re.compile(r"\n[ \t]*\n")


def timestamp_to_seconds(text: str) -> float:
    """将 `HH:MM:SS[,.]mmm` 转换为秒，字段均按整数解析。"""
    m = TIMESTAMP_RE.search(text)
    if not m:
        raise ValueError(f"非法时间戳：{text!r}")
    h, mi, s, ms = (int(g) for g in m.groups())
    return h * 3600 + mi * 60 + s + ms / 1000


def _match_timestamp_line(line: str) -> Optional[float]:
    """若该行是时间戳行则返回起始秒数，否则返回 None。"""
    if TIMESTAMP_RE.search(line):
        return timestamp_to_seconds(line)
    m = COMPACT_RANGE_RE.search(line)
    if m:
        mi, s, ms = (int(g) for g in m.groups()[:3])
        return mi * 60 + s + ms / 1000
    return None


def _question_number(text: str, token: str) -> Optional[int]:
    m = re.search(re.escape(token) + r"\s*(\d+)", text, flags=re.IGNORECASE)
    return int(m.group(1)) if m else None


def _parse_block(block: str, token: str) -> SubtitleEntry:
    """解析单个字幕块。

    规则：
    - 按行顺序查找第一条时间戳行，其后的非空行以空格拼接为文本；
    - 找不到时间戳行时抛出 `ParseSkip`，由调用方静默跳过。
    """
    lines = [ln.strip() for ln in block.split("\n") if ln.strip()]
    for i, line in enumerate(lines):
        seconds = _match_timestamp_line(line)
        if seconds is None:
            continue
        text = " ".join(lines[i + 1:]).strip()
        is_question = token.lower() in text.lower()
        return SubtitleEntry(
            raw_timestamp=line,
            time_in_seconds=seconds,
            text=text,
            is_question=is_question,
            question_number=_question_number(text, token) if is_question else None,
        )
    raise ParseSkip("字幕块缺少时间戳行")


def split_blocks(document: str) -> List[str]:
    """统一换行符后按空行切分为字幕块。"""
    normalized = document.replace("\r\n", "\n").replace("\r", "\n")
    return [b for b in _BLOCK_SEP_RE.split(normalized) if b.strip()]


def parse_entries(document: str, question_token: str = DEFAULT_QUESTION_TOKEN) -> List[SubtitleEntry]:
    """解析全部带时间戳的字幕条目（含非题目条目），保持文档顺序，不排序不去重。"""
    entries: List[SubtitleEntry] = []
    skipped = 0
    for block in split_blocks(document):
        try:
            entries.append(_parse_block(block, question_token))
        except ParseSkip:
            skipped += 1
    log.debug("字幕解析完成", extra={"entries": len(entries), "skipped": skipped})
    return entries


def extract(document: str, question_token: str = DEFAULT_QUESTION_TOKEN) -> List[SubtitleEntry]:
    """提取题目时间点。

    题目判定为不区分大小写的子串匹配（文本任意位置出现标记即可），
    以兼容不同的字幕编写习惯。返回空列表表示“未找到题目”，不视为错误。
    """
    entries = parse_entries(document, question_token)
    questions = [e for e in entries if e.is_question]
    log.info("题目时间点提取完成", extra={"entries": len(entries), "questions": len(questions)})
    return questions

