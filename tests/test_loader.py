import pysubs2
import pytest

from quizshot.subtitles.loader import load_questions, load_subtitle_text


def test_srt_with_bom(tmp_path):
    p = tmp_path / "quiz.srt"
    p.write_text("1\n00:00:01,000 --> 00:00:02,000\nQuestion 1\n", encoding="utf-8-sig")
    assert load_subtitle_text(p).startswith("1\n")
    (entry,) = load_questions(p)
    assert entry.time_in_seconds == 1.0


def test_vtt_is_converted(tmp_path):
    p = tmp_path / "quiz.vtt"
    p.write_text(
        "WEBVTT\n\n"
        "00:00:01.500 --> 00:00:02.000\nQuestion 1\n\n"
        "00:00:03.000 --> 00:00:04.000\nanswer\n",
        encoding="utf-8",
    )
    entries = load_questions(p)
    assert [e.time_in_seconds for e in entries] == [1.5]


def test_ass_keeps_default_style_only(tmp_path):
    subs = pysubs2.SSAFile()
    subs.styles["Alt"] = pysubs2.SSAStyle()
    subs.events.append(pysubs2.SSAEvent(start=2000, end=3000, text="Question 1", style="Default"))
    subs.events.append(pysubs2.SSAEvent(start=4000, end=5000, text="Question 1 (translated)", style="Alt"))
    p = tmp_path / "quiz.ass"
    subs.save(str(p))

    entries = load_questions(p)
    assert [e.time_in_seconds for e in entries] == [2.0]


def test_unsupported_extension(tmp_path):
    p = tmp_path / "quiz.sub"
    p.write_text("x", encoding="utf-8")
    with pytest.raises(ValueError):
        load_subtitle_text(p)
