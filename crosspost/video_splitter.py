"""Split a long video into 30-second vertical (9:16) shorts.

Each window ``[30 * i, min(30 * (i + 1), duration)]`` is rendered on its own
ffmpeg run: the source frame is scaled to cover a 1080x1920 canvas, centred,
and the overflow cropped away; audio is kept when the source has any.
Segments are rendered strictly one after another and every file produced
by a failed run is removed before the error propagates.
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
import subprocess
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable

from crosspost.errors import SplitError

logger = logging.getLogger("crosspost")

SEGMENT_SECONDS = 30
CANVAS_WIDTH = 1080
CANVAS_HEIGHT = 1920
TARGET_ASPECT = CANVAS_WIDTH / CANVAS_HEIGHT
FRAME_RATE = 30
VIDEO_BITRATE = "5M"
MAX_VIDEO_BYTES = int(os.getenv("MAX_VIDEO_BYTES", str(500 * 1024 * 1024)))
CAPTION_WORDS = 4

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")


@dataclass
class Segment:
    id: str
    start_time: float
    end_time: float
    duration: float
    title: str
    path: str | None = None
    transcription: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SplitProgress:
    current: int
    total: int
    status: str


@dataclass
class VideoInfo:
    duration: float
    width: int
    height: int
    has_audio: bool


@dataclass
class FrameLayout:
    scaled_width: float
    scaled_height: float
    offset_x: float
    offset_y: float


ProgressCallback = Callable[[SplitProgress], None]


def validate_upload(content_type: str | None, size: int) -> None:
    if not (content_type or "").startswith("video/"):
        raise SplitError("Please select a valid video file")
    if size > MAX_VIDEO_BYTES:
        raise SplitError(f"Video file is too large. Maximum size is {MAX_VIDEO_BYTES // (1024 * 1024)}MB.")


def plan_segments(duration: float, segment_seconds: int = SEGMENT_SECONDS) -> list[Segment]:
    if duration <= 0:
        return []
    count = math.ceil(duration / segment_seconds)
    stamp = int(time.time() * 1000)
    segments = []
    for i in range(count):
        start = i * segment_seconds
        end = min((i + 1) * segment_seconds, duration)
        segments.append(
            Segment(
                id=f"segment_{i}_{stamp}",
                start_time=float(start),
                end_time=float(end),
                duration=float(end - start),
                title=f"Part {i + 1} of {count}",
            )
        )
    return segments


def compute_layout(src_width: int, src_height: int) -> FrameLayout:
    if src_width <= 0 or src_height <= 0:
        raise SplitError("Video has no frame size")
    if src_width / src_height > TARGET_ASPECT:
        # wider than 9:16, crop the sides
        scale = CANVAS_HEIGHT / src_height
        scaled_width = src_width * scale
        return FrameLayout(scaled_width, CANVAS_HEIGHT, (CANVAS_WIDTH - scaled_width) / 2, 0)
    scale = CANVAS_WIDTH / src_width
    scaled_height = src_height * scale
    return FrameLayout(CANVAS_WIDTH, scaled_height, 0, (CANVAS_HEIGHT - scaled_height) / 2)


def _even(value: float) -> int:
    return max(2, int(round(value / 2)) * 2)


def build_video_filter(layout: FrameLayout) -> str:
    width = _even(layout.scaled_width)
    height = _even(layout.scaled_height)
    pad_width = max(CANVAS_WIDTH, width)
    pad_height = max(CANVAS_HEIGHT, height)
    return ",".join(
        [
            f"scale={width}:{height}",
            f"pad={pad_width}:{pad_height}:{(pad_width - width) // 2}:{(pad_height - height) // 2}:black",
            f"crop={CANVAS_WIDTH}:{CANVAS_HEIGHT}:{(pad_width - CANVAS_WIDTH) // 2}:{(pad_height - CANVAS_HEIGHT) // 2}",
            "setsar=1",
        ]
    )


def _readable_probe_error(stderr: str) -> str:
    lowered = stderr.lower()
    if "invalid data found" in lowered or "no such file" in lowered:
        return "Video format not supported or source is empty"
    if "decod" in lowered:
        return "Video decoding failed"
    return f"Failed to load video: {stderr.strip()[-300:]}"


def probe_video(path: str | Path) -> VideoInfo:
    cmd = [FFPROBE_BIN, "-v", "error", "-print_format", "json", "-show_format", "-show_streams", str(path)]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
    except FileNotFoundError as exc:
        raise SplitError("ffprobe is not installed") from exc
    except subprocess.TimeoutExpired as exc:
        raise SplitError("Video loading was aborted") from exc
    if result.returncode != 0:
        raise SplitError(_readable_probe_error(result.stderr or ""))

    try:
        data = json.loads(result.stdout or "{}")
    except ValueError as exc:
        raise SplitError("Failed to load video") from exc
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise SplitError("Video format not supported or source is empty")
    duration = float((data.get("format") or {}).get("duration") or video.get("duration") or 0)
    if duration <= 0:
        raise SplitError("Video has no playable duration")
    return VideoInfo(
        duration=duration,
        width=int(video.get("width") or 0),
        height=int(video.get("height") or 0),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
    )


def render_segment(source: str | Path, segment: Segment, output: Path, info: VideoInfo) -> None:
    cmd = [
        FFMPEG_BIN,
        "-y",
        "-ss", f"{segment.start_time:.3f}",
        "-i", str(source),
        "-t", f"{segment.duration:.3f}",
        "-vf", build_video_filter(compute_layout(info.width, info.height)),
        "-r", str(FRAME_RATE),
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-b:v", VIDEO_BITRATE,
        "-pix_fmt", "yuv420p",
    ]
    if info.has_audio:
        cmd += ["-c:a", "aac", "-b:a", "128k"]
    else:
        cmd += ["-an"]
    cmd += ["-movflags", "+faststart", str(output)]

    logger.info("split_render_start segment_id=%s start=%.2f end=%.2f", segment.id, segment.start_time, segment.end_time)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except FileNotFoundError as exc:
        raise SplitError("ffmpeg is not installed") from exc
    if result.returncode != 0:
        raise SplitError(f"Recording failed: {(result.stderr or '').strip()[-300:]}")
    if not output.exists() or output.stat().st_size == 0:
        raise SplitError("No data recorded")


def _cleanup(paths: list[Path]) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("split_cleanup_fail path=%s", path)


def split_video(
    source: str | Path,
    output_dir: str | Path,
    on_progress: ProgressCallback | None = None,
) -> list[Segment]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    info = probe_video(source)
    segments = plan_segments(info.duration)
    total = len(segments)
    logger.info("split_planned source=%s duration=%.2f segments=%s", source, info.duration, total)

    def report(current: int, status: str) -> None:
        if on_progress is not None:
            on_progress(SplitProgress(current=current, total=total, status=status))

    report(0, "Analyzing video...")
    report(0, "Processing segments...")

    produced: list[Path] = []
    try:
        for index, segment in enumerate(segments):
            report(index, f"Processing segment {index + 1}/{total}...")
            output = output_dir / f"{segment.id}.mp4"
            produced.append(output)
            render_segment(source, segment, output, info)
            segment.path = str(output)
            report(index + 1, f"Processed segment {index + 1}/{total}")
    except Exception:
        logger.exception("split_failed source=%s", source)
        _cleanup(produced)
        raise
    return segments


def download_name(title: str) -> str:
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', title)}.mp4"


def generate_captions(transcription: str, timestamps: list[float]) -> list[dict]:
    words = transcription.split(" ")
    captions = []
    for i in range(0, len(words), CAPTION_WORDS):
        chunk = " ".join(words[i : i + CAPTION_WORDS])
        time_index = math.floor(i / len(words) * len(timestamps))
        caption_time = timestamps[time_index] if time_index < len(timestamps) else 0
        captions.append({"time": caption_time or 0, "text": chunk})
    return captions
