"""
Media operations backed by ffmpeg/ffprobe (and Pillow for still images).

Every operation takes the staged input path plus its typed options and returns
either the produced artifact path(s) or, for probe, a metadata dict. Outputs are
written under MEDIA_ROOT/outputs; on failure, partial outputs are removed and
ExecutorError is raised.
"""
import json
import logging
import subprocess
from pathlib import Path

from django.conf import settings
from PIL import Image, UnidentifiedImageError

from .utils import new_output_path, outputs_dir, remove_file

logger = logging.getLogger(__name__)

STDERR_TAIL = 2000


class ExecutorError(Exception):
    """A media operation failed."""


def _run(cmd: list[str]) -> subprocess.CompletedProcess:
    timeout = settings.EXECUTOR_TIMEOUT_SECONDS
    logger.debug("Running %s", " ".join(cmd))
    try:
        return subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)
    except subprocess.CalledProcessError as e:
        err = e.stderr.decode("utf-8", errors="ignore").strip() if e.stderr else str(e)
        raise ExecutorError(f"{cmd[0]} exited with status {e.returncode}: {err[-STDERR_TAIL:]}") from e
    except subprocess.TimeoutExpired as e:
        raise ExecutorError(f"{cmd[0]} timed out after {timeout}s") from e
    except FileNotFoundError as e:
        raise ExecutorError(f"{cmd[0]} is not installed or not on PATH") from e


def _ffmpeg(input_path, *args) -> None:
    _run(["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-i", str(input_path), *map(str, args)])


def _single_output(extension: str, input_path, *args) -> str:
    out = new_output_path(extension)
    try:
        _ffmpeg(input_path, *args, out)
    except ExecutorError:
        remove_file(out)
        raise
    return str(out)


def convert_video(input_path, *, codec="libx264", video_bitrate=None, audio_bitrate=None,
                  fps=None, resolution=None) -> str:
    """Transcode to an H.264/AAC MP4 (codec overridable)."""
    args = ["-c:v", codec or "libx264", "-c:a", "aac", "-movflags", "+faststart"]
    if video_bitrate:
        args += ["-b:v", video_bitrate]
    if audio_bitrate:
        args += ["-b:a", audio_bitrate]
    if fps:
        args += ["-r", fps]
    if resolution:
        args += ["-s", resolution]
    return _single_output("mp4", input_path, *args)


def extract_audio(input_path, *, track=None, channels=None) -> str:
    args = ["-vn"]
    if track is not None:
        args += ["-map", f"0:a:{track}"]
    if channels:
        args += ["-ac", channels]
    args += ["-c:a", "libmp3lame"]
    return _single_output("mp3", input_path, *args)


def convert_audio(input_path, *, format="mp3", bitrate=None, sample_rate=None) -> str:
    args = ["-vn"]
    if bitrate:
        args += ["-b:a", bitrate]
    if sample_rate:
        args += ["-ar", sample_rate]
    return _single_output(format, input_path, *args)


def convert_image(input_path, *, quality=None) -> str:
    """Re-encode any still image Pillow can read as a JPEG."""
    out = new_output_path("jpg")
    try:
        with Image.open(input_path) as img:
            img.convert("RGB").save(out, format="JPEG", quality=quality or 90)
    except (UnidentifiedImageError, OSError) as e:
        remove_file(out)
        raise ExecutorError(f"Could not convert image: {e}") from e
    return str(out)


def _frame_at(input_path, timestamp) -> str:
    # -ss ahead of -i seeks the input instead of decoding up to the mark
    out = new_output_path("jpg")
    try:
        _run(["ffmpeg", "-y", "-hide_banner", "-loglevel", "error", "-ss", str(timestamp),
              "-i", str(input_path), "-frames:v", "1", "-q:v", "2", str(out)])
    except ExecutorError:
        remove_file(out)
        raise
    return str(out)


def extract_frames(input_path, *, timestamp=None, count=None, fps=None, heartbeat=None) -> list[str]:
    """
    One frame at `timestamp`, `count` frames spread evenly over the duration,
    or every frame at `fps`. Returns paths in extraction order.

    `count` mode runs one ffmpeg call per frame; `heartbeat` is called after each
    of them so the job's lease outlives the whole series.
    """
    beat = heartbeat or (lambda: None)
    frames: list[str] = []
    try:
        if timestamp:
            frames.append(_frame_at(input_path, timestamp))
        elif count:
            duration = probe(input_path)["format"]["duration"]
            beat()
            if duration <= 0:
                raise ExecutorError("Cannot spread frames over a stream without a duration")
            for i in range(count):
                offset = duration * (i + 1) / (count + 1)
                frames.append(_frame_at(input_path, f"{offset:.3f}"))
                beat()
        elif fps:
            stem = new_output_path("jpg").stem
            pattern = outputs_dir() / f"{stem}-%04d.jpg"
            try:
                _ffmpeg(input_path, "-vf", f"fps={fps}", "-q:v", "2", pattern)
            finally:
                # sorted by the zero-padded sequence number ffmpeg assigns
                frames.extend(str(p) for p in sorted(outputs_dir().glob(f"{stem}-*.jpg")))
        else:
            raise ExecutorError("Frame extraction needs a timestamp, count or fps")
    except ExecutorError:
        for path in frames:
            remove_file(path)
        raise

    produced = [p for p in frames if Path(p).exists()]
    if not produced:
        raise ExecutorError("Frame extraction produced no frames")
    return produced


def probe(input_path) -> dict:
    proc = _run([
        "ffprobe", "-v", "error", "-print_format", "json",
        "-show_format", "-show_streams", str(input_path),
    ])
    try:
        data = json.loads(proc.stdout.decode("utf-8", errors="ignore") or "{}")
    except ValueError as e:
        raise ExecutorError(f"ffprobe returned unreadable output: {e}") from e

    fmt = data.get("format") or {}
    streams = []
    for s in data.get("streams") or []:
        entry = {
            "codec_type": s.get("codec_type", ""),
            "codec_name": s.get("codec_name", ""),
        }
        for key in ("width", "height", "channels"):
            if s.get(key) is not None:
                entry[key] = s[key]
        if s.get("sample_rate") is not None:
            entry["sample_rate"] = str(s["sample_rate"])
        streams.append(entry)

    return {
        "format": {
            "filename": fmt.get("filename", ""),
            "format_name": fmt.get("format_name", ""),
            "duration": _number(fmt.get("duration"), float),
            "size": _number(fmt.get("size"), int),
            "bit_rate": _number(fmt.get("bit_rate"), int),
        },
        "streams": streams,
    }


def _number(value, cast):
    try:
        return cast(float(value))
    except (TypeError, ValueError):
        return cast(0)


OPERATIONS = {
    "video-convert": convert_video,
    "audio-extract": extract_audio,
    "frame-extract": extract_frames,
    "audio-convert": convert_audio,
    "image-convert": convert_image,
    "probe": probe,
}

# operations made of several executor calls
MULTI_STEP = {"frame-extract"}


def execute(operation: str, input_path, options: dict | None = None, heartbeat=None):
    try:
        func = OPERATIONS[operation]
    except KeyError:
        raise ExecutorError(f"Unknown job type: {operation}")
    kwargs = dict(options or {})
    if heartbeat is not None and operation in MULTI_STEP:
        kwargs["heartbeat"] = heartbeat
    return func(input_path, **kwargs)
