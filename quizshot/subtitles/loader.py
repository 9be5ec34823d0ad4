from __future__ import annotations

from pathlib import Path
from typing import List

import pysubs2  # type: ignore
import webvtt  # type: ignore

from .extractor import DEFAULT_QUESTION_TOKEN, extract
from .models import SubtitleEntry


def _ass_to_srt_text(p: Path) -> str:
    """ASS/SSA 转为 SRT 文本。

    ASS/SSA 可能通过样式区分双语轨道，此处仅保留 `Style == "Default"` 的事件。
    """
    subs = pysubs2.load(str(p))
    subs.events = [e for e in subs if getattr(e, "style", "Default") == "Default"]
    return subs.to_string("srt")


def _vtt_to_srt_text(p: Path) -> str:
    """VTT 转为 SRT 形状的字幕块（保留小数点分隔的毫秒，提取器同样接受）。"""
    blocks: List[str] = []
    for i, c in enumerate(webvtt.read(str(p)), start=1):
        blocks.append(f"{i}\n{c.start} --> {c.end}\n{c.text}")
    return "\n\n".join(blocks) + "\n"


def load_subtitle_text(path: str | Path) -> str:
    """读取字幕文件并统一为 SRT 形状的纯文本。

    - SRT/TXT 直接按 UTF-8 读取（兼容 BOM）；
    - ASS/SSA 使用 pysubs2 解析；
    - VTT 使用 webvtt 解析。
    """
    p = Path(path)
    ext = p.suffix.lower()
    if ext in {".srt", ".txt"}:
        return p.read_text(encoding="utf-8-sig")
    if ext in {".ass", ".ssa"}:
        return _ass_to_srt_text(p)
    if ext == ".vtt":
        return _vtt_to_srt_text(p)
    raise ValueError(f"不支持的字幕格式：{ext}")


def load_questions(path: str | Path, question_token: str = DEFAULT_QUESTION_TOKEN) -> List[SubtitleEntry]:
    """加载字幕文件并提取题目时间点。"""
    return extract(load_subtitle_text(path), question_token)
