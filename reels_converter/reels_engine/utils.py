import os
import re
from pathlib import Path

import imageio_ffmpeg
from werkzeug.utils import secure_filename

from .. import config

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


def ensure_dir(path: str | Path) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def ffmpeg_bin() -> str:
    """FFMPEG_BIN wins; otherwise the binary bundled with imageio-ffmpeg."""
    exe = config.FFMPEG_BIN or os.environ.get("FFMPEG_BIN")
    if exe:
        return exe
    return imageio_ffmpeg.get_ffmpeg_exe()


def display_name(filename: str) -> str:
    """Strip any client-side directory components from an uploaded name."""
    return os.path.basename((filename or "").replace("\\", "/")) or "image"


def suggested_video_name(source_name: str) -> str:
    """photo.jpg -> photo-video.mp4"""
    stem = _EXTENSION_RE.sub("", display_name(source_name))
    stem = secure_filename(stem) or "video"
    return f"{stem}-video.mp4"
