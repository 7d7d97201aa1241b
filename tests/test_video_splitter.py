import json
import subprocess
from pathlib import Path

import pytest

from crosspost import video_splitter
from crosspost.errors import SplitError


def test_plan_segments_covers_duration() -> None:
    segments = video_splitter.plan_segments(65)
    assert [(s.start_time, s.end_time) for s in segments] == [(0, 30), (30, 60), (60, 65)]
    assert segments[-1].duration == 5
    assert [s.title for s in segments] == ["Part 1 of 3", "Part 2 of 3", "Part 3 of 3"]
    assert segments[0].id.startswith("segment_0_")
    assert len({s.id for s in segments}) == 3


def test_plan_segments_exact_multiple_and_empty() -> None:
    assert len(video_splitter.plan_segments(60)) == 2
    assert video_splitter.plan_segments(0) == []


def test_compute_layout_crops_wide_source_sides() -> None:
    layout = video_splitter.compute_layout(1920, 1080)
    assert layout.scaled_height == 1920
    assert layout.scaled_width == pytest.approx(3413.33, abs=0.01)
    assert layout.offset_x == pytest.approx(-1166.67, abs=0.01)
    assert layout.offset_y == 0


def test_compute_layout_crops_tall_source_top_and_bottom() -> None:
    layout = video_splitter.compute_layout(720, 1600)
    assert layout.scaled_width == 1080
    assert layout.scaled_height == pytest.approx(2400)
    assert layout.offset_y == pytest.approx(-240)


def test_compute_layout_rejects_empty_frame() -> None:
    with pytest.raises(SplitError):
        video_splitter.compute_layout(0, 1080)


def test_build_video_filter_centres_crop() -> None:
    wide = video_splitter.build_video_filter(video_splitter.compute_layout(1920, 1080))
    assert wide == "scale=3414:1920,pad=3414:1920:0:0:black,crop=1080:1920:1167:0,setsar=1"
    native = video_splitter.build_video_filter(video_splitter.compute_layout(1080, 1920))
    assert native == "scale=1080:1920,pad=1080:1920:0:0:black,crop=1080:1920:0:0,setsar=1"


def test_validate_upload() -> None:
    video_splitter.validate_upload("video/mp4", 1024)
    with pytest.raises(SplitError, match="valid video"):
        video_splitter.validate_upload("image/png", 1024)
    with pytest.raises(SplitError, match="too large"):
        video_splitter.validate_upload("video/mp4", video_splitter.MAX_VIDEO_BYTES + 1)


def test_download_name_and_captions() -> None:
    assert video_splitter.download_name("Part 1 of 3") == "Part_1_of_3.mp4"
    captions = video_splitter.generate_captions("one two three four five six", [0.0, 1.0, 2.0])
    assert captions == [{"time": 0.0, "text": "one two three four"}, {"time": 2.0, "text": "five six"}]
    assert video_splitter.generate_captions("hello", [])[0]["time"] == 0


def _probe_output(duration=65.0, audio=True):
    streams = [{"codec_type": "video", "width": 1920, "height": 1080}]
    if audio:
        streams.append({"codec_type": "audio"})
    return json.dumps({"format": {"duration": str(duration)}, "streams": streams})


def test_probe_video_reads_streams(monkeypatch) -> None:
    monkeypatch.setattr(
        subprocess, "run", lambda cmd, **kw: subprocess.CompletedProcess(cmd, 0, _probe_output(audio=False), "")
    )
    info = video_splitter.probe_video("in.mp4")
    assert info == video_splitter.VideoInfo(duration=65.0, width=1920, height=1080, has_audio=False)


def test_probe_video_readable_error(monkeypatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, **kw: subprocess.CompletedProcess(cmd, 1, "", "in.mp4: Invalid data found when processing input"),
    )
    with pytest.raises(SplitError, match="not supported"):
        video_splitter.probe_video("in.mp4")


class FakeFfmpeg:
    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.renders = []

    def __call__(self, cmd, **kwargs):
        if cmd[0] == video_splitter.FFPROBE_BIN:
            return subprocess.CompletedProcess(cmd, 0, _probe_output(), "")
        self.renders.append(cmd)
        output = Path(cmd[-1])
        output.write_bytes(b"mp4")
        if len(self.renders) == self.fail_on:
            return subprocess.CompletedProcess(cmd, 1, "", "encoder exploded")
        return subprocess.CompletedProcess(cmd, 0, "", "")


def test_split_video_renders_each_segment_and_reports_progress(monkeypatch, tmp_path) -> None:
    fake = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "run", fake)
    progress = []

    segments = video_splitter.split_video("in.mp4", tmp_path, progress.append)

    assert len(segments) == 3
    assert all(Path(s.path).exists() for s in segments)
    assert fake.renders[2][fake.renders[2].index("-ss") + 1] == "60.000"
    assert fake.renders[2][fake.renders[2].index("-t") + 1] == "5.000"
    assert "aac" in fake.renders[0]
    assert progress[-1] == video_splitter.SplitProgress(current=3, total=3, status="Processed segment 3/3")


def test_split_video_cleans_up_after_failure(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(subprocess, "run", FakeFfmpeg(fail_on=2))
    with pytest.raises(SplitError, match="Recording failed"):
        video_splitter.split_video("in.mp4", tmp_path)
    assert list(tmp_path.iterdir()) == []
