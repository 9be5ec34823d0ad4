import asyncio
import io

import pytest
from PIL import Image

from quizshot.errors import EncodeError, OutOfRangeError, ResourceError, SeekTimeoutError
from quizshot.screenshot import capture
from quizshot.screenshot.capture import CaptureJob, CaptureState, build_filename, format_timestamp
from quizshot.screenshot.store import ImageStore

from conftest import FakeVideoSource


def _job(source, t, index=0, tmp_path=None, timeout=0.2):
    return CaptureJob(
        source,
        t,
        index,
        store=ImageStore(tmp_path / "spool"),
        run_seq=7,
        seek_timeout_sec=timeout,
    )


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (0, "00:00:00,000"),
        (1.001, "00:00:01,001"),
        (65.25, "00:01:05,250"),
        (3661.5, "01:01:01,500"),
    ],
)
def test_format_timestamp(seconds, expected):
    assert format_timestamp(seconds) == expected


def test_build_filename():
    assert build_filename(0, "00:01:05,250") == "screenshot_001_00-01-05,250.png"
    assert build_filename(41, "01:00:00,000") == "screenshot_042_01-00-00,000.png"


def test_capture_success(tmp_path):
    source = FakeVideoSource(width=80, height=45)
    job = _job(source, 12.5, index=2, tmp_path=tmp_path)

    result = asyncio.run(job.run())

    assert job.state == CaptureState.SUCCEEDED
    assert result.id == "7_2"
    assert result.display_timestamp == "00:00:12,500"
    assert result.filename == "screenshot_003_00-00-12,500.png"
    assert source.seeks == [12.5]
    assert source.listener_count() == 0
    img = Image.open(io.BytesIO(result.image.read_bytes()))
    assert img.format == "PNG"
    assert img.size == (80, 45)


def test_out_of_range_does_not_seek(tmp_path):
    source = FakeVideoSource(duration=10.0)
    job = _job(source, 10.5, tmp_path=tmp_path)

    with pytest.raises(OutOfRangeError):
        asyncio.run(job.run())
    assert source.seeks == []
    assert source.position == 0.0
    assert job.state == CaptureState.FAILED


def test_seek_timeout_detaches_listeners(tmp_path):
    source = FakeVideoSource(behaviors={3.0: "hang"})
    job = _job(source, 3.0, tmp_path=tmp_path, timeout=0.05)

    with pytest.raises(SeekTimeoutError):
        asyncio.run(job.run())
    assert job.state == CaptureState.FAILED
    assert source.listener_count() == 0


def test_resource_error_during_seek(tmp_path):
    source = FakeVideoSource(behaviors={3.0: "error"})
    job = _job(source, 3.0, tmp_path=tmp_path)

    with pytest.raises(ResourceError):
        asyncio.run(job.run())
    assert source.listener_count() == 0


def test_empty_encode_output(tmp_path, monkeypatch):
    monkeypatch.setattr(capture, "encode_png", lambda image, level: b"")
    source = FakeVideoSource()
    job = _job(source, 1.0, tmp_path=tmp_path)

    with pytest.raises(EncodeError):
        asyncio.run(job.run())
    assert job.state == CaptureState.FAILED
    assert source.listener_count() == 0


def test_unexpected_render_error_becomes_resource_error(tmp_path):
    source = FakeVideoSource()

    def broken_render():
        raise ValueError("not enough image data")

    source.render_frame = broken_render
    job = _job(source, 1.0, tmp_path=tmp_path)

    with pytest.raises(ResourceError):
        asyncio.run(job.run())
    assert job.state == CaptureState.FAILED
    assert source.listener_count() == 0
