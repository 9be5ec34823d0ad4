from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubtitleEntry(BaseModel):
    """带时间戳的字幕条目（解析后不可变）。"""

    model_config = ConfigDict(frozen=True)

    raw_timestamp: str = Field(description="原始时间戳行（保留原文）")
    time_in_seconds: float = Field(ge=0, description="起始时间（秒）")
    text: str = Field(description="时间戳行之后的文本，以空格拼接")
    is_question: bool = Field(description="文本中是否包含题目标记（不区分大小写）")
    question_number: Optional[int] = Field(default=None, description="题号（标记后紧跟的数字，缺失为 None）")
