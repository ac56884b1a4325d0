import logging
import os
import subprocess
import tempfile
import threading
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional

from PIL import Image, UnidentifiedImageError

from .. import config
from .errors import ConversionFailed
from .schemas import RenderParams
from .utils import ffmpeg_bin

logger = logging.getLogger(__name__)

ProgressListener = Callable[[int], None]

_PIL_SUFFIXES = {"JPEG": ".jpg", "PNG": ".png", "WEBP": ".webp", "GIF": ".gif", "BMP": ".bmp", "TIFF": ".tiff"}


class EngineError(RuntimeError):
    """ffmpeg could not be started or exited with an error."""


def _parse_out_time(line: str) -> Optional[float]:
    """Read seconds from an `out_time_us=`/`out_time_ms=` progress line."""
    key, _, value = line.partition("=")
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        # ffmpeg reports microseconds under both keys.
        return int(value) / 1_000_000
    except ValueError:
        return None


class FFmpegEngine:
    """
    One ffmpeg binary plus a single progress subscriber.

    The engine is not assumed safe for concurrent runs; the adapter
    serializes access to it.
    """

    def __init__(self, binary: str, version: str = ""):
        self.binary = binary
        self.version = version
        self._listener: Optional[ProgressListener] = None

    @classmethod
    def load(cls, binary: Optional[str] = None) -> "FFmpegEngine":
        exe = binary or ffmpeg_bin()
        try:
            proc = subprocess.run([exe, "-hide_banner", "-version"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=30)
        except (OSError, subprocess.SubprocessError) as e:
            raise EngineError(f"ffmpeg not runnable at {exe}: {e}") from e
        if proc.returncode != 0:
            raise EngineError(f"ffmpeg -version failed (code {proc.returncode})")
        version = proc.stdout.decode("utf-8", errors="ignore").splitlines()[0:1]
        return cls(exe, version[0] if version else "")

    def subscribe(self, listener: ProgressListener) -> None:
        if self._listener is not None:
            raise EngineError("ffmpeg engine already has a progress listener")
        self._listener = listener

    def unsubscribe(self, listener: ProgressListener) -> None:
        if self._listener is listener:
            self._listener = None

    def _emit(self, percent: float) -> None:
        listener = self._listener
        if listener is not None:
            listener(int(percent))

    def run(self, args: List[str], duration: float, timeout: Optional[float] = None) -> None:
        """Run ffmpeg with `args`, reporting percent of `duration` rendered."""
        cmd = [
            self.binary,
            "-y", "-nostdin", "-hide_banner", "-loglevel", "error",
            "-progress", "pipe:1", "-nostats",
            *args,
        ]
        timeout = timeout or config.FFMPEG_TIMEOUT_SEC
        with tempfile.TemporaryFile() as stderr:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr)
            except OSError as e:
                raise EngineError(f"Could not start ffmpeg: {e}") from e
            timer = threading.Timer(timeout, proc.kill)
            timer.start()
            try:
                assert proc.stdout is not None
                for raw in proc.stdout:
                    line = raw.decode("utf-8", errors="ignore").strip()
                    if line == "progress=end":
                        self._emit(100)
                        continue
                    seconds = _parse_out_time(line)
                    if seconds is not None and duration > 0:
                        self._emit(min(100.0, max(0.0, seconds / duration * 100)))
                returncode = proc.wait()
            finally:
                timer.cancel()
                if proc.poll() is None:
                    proc.kill()
                    proc.wait()
            if returncode != 0:
                stderr.seek(0)
                stderr_tail = stderr.read().decode("utf-8", errors="ignore")[-2000:]
                raise EngineError(f"ffmpeg failed (code {returncode}):\n{stderr_tail}")


class CodecEngineAdapter:
    """
    Translates conversion parameters into ffmpeg runs on one shared engine.

    `ensure_ready` loads the engine once; concurrent first callers wait on the
    same initialization. `convert` holds the engine lock for the whole run, so
    at most one conversion is in flight per adapter.
    """

    def __init__(self, engine_factory: Optional[Callable[[], FFmpegEngine]] = None):
        self._engine_factory = engine_factory or FFmpegEngine.load
        self._engine: Optional[FFmpegEngine] = None
        self._init_lock = threading.Lock()
        self._run_lock = threading.Lock()

    @property
    def ready(self) -> bool:
        return self._engine is not None

    def ensure_ready(self) -> FFmpegEngine:
        if self._engine is not None:
            return self._engine
        with self._init_lock:
            if self._engine is None:
                try:
                    engine = self._engine_factory()
                except (EngineError, OSError, RuntimeError) as e:
                    logger.error(f"Codec engine initialization failed: {e}")
                    raise ConversionFailed(f"Codec engine unavailable: {e}") from e
                logger.info(f"Codec engine ready: {engine.version or engine.binary}")
                self._engine = engine
        return self._engine

    def convert(
        self,
        data: bytes,
        params: RenderParams,
        on_progress: Optional[ProgressListener] = None,
    ) -> bytes:
        """Render `data` (an encoded image) into MP4 bytes."""
        suffix = _probe_image(data)
        engine = self.ensure_ready()

        last = -1

        def relay(percent: int) -> None:
            nonlocal last
            percent = max(0, min(100, int(percent)))
            if percent <= last:
                return
            last = percent
            if on_progress is not None:
                on_progress(percent)

        with self._run_lock, tempfile.TemporaryDirectory(prefix="reels_") as tmp_dir:
            input_path = str(Path(tmp_dir) / f"input{suffix}")
            output_path = str(Path(tmp_dir) / "output.mp4")
            Path(input_path).write_bytes(data)

            engine.subscribe(relay)
            try:
                engine.run(params.ffmpeg_args(input_path, output_path), params.duration_sec)
            except (EngineError, OSError) as e:
                raise ConversionFailed(f"Encoding failed: {e}") from e
            finally:
                engine.unsubscribe(relay)

            if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
                raise ConversionFailed("Encoding failed: ffmpeg produced no output")
            output = Path(output_path).read_bytes()

        relay(100)
        return output


def _probe_image(data: bytes) -> str:
    """Decode-check the input and return a file suffix matching its format."""
    if not data:
        raise ConversionFailed("Invalid image data: input is empty")
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ConversionFailed(f"Invalid image data: {e}") from e
    fmt = fmt or "img"
    return _PIL_SUFFIXES.get(fmt, f".{fmt.lower()}")
