"""
Convert images to 9:16 reels from the command line.

    reels-convert photo1.jpg photo2.png --duration 4.5 --output-dir out/
    reels-convert photo.jpg --remote http://localhost:6741/api/convert
"""

from __future__ import annotations

import argparse
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional, Set

from . import config
from .client import convert_remote
from .reels_engine import ConversionFailed, ConversionSession, Upload
from .reels_engine.results import Download
from .reels_engine.utils import ensure_dir, suggested_video_name

logger = logging.getLogger("reels_converter")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Turn still images into vertical 1080x1920 MP4 clips")
    parser.add_argument("images", nargs="+", help="Image files to convert")
    parser.add_argument("--duration", type=float, default=config.DEFAULT_DURATION, help="Clip length in seconds (1-10)")
    parser.add_argument("--output-dir", default=".", help="Where to write the videos")
    parser.add_argument("--stagger", type=float, default=config.DOWNLOAD_STAGGER_SEC, help="Delay between written files")
    parser.add_argument("--remote", default=None, help="Use a remote /api/convert endpoint instead of local ffmpeg")
    return parser.parse_args(argv)


def _read_upload(path: Path) -> Upload:
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return Upload(filename=path.name, content_type=content_type, data=path.read_bytes())


def _free_target(output_dir: Path, filename: str, used: Set[str]) -> Path:
    """`a-video.mp4`, then `a-video-1.mp4`, ... skipping names already taken on disk or in this run."""
    stem, suffix = filename.rsplit(".", 1)
    candidate = filename
    counter = 1
    while candidate in used or (output_dir / candidate).exists():
        candidate = f"{stem}-{counter}.{suffix}"
        counter += 1
    used.add(candidate)
    return output_dir / candidate


def _run_local(args: argparse.Namespace, output_dir: Path) -> int:
    session = ConversionSession(duration=args.duration)
    failures = 0
    try:
        uploads = []
        for name in args.images:
            path = Path(name)
            if not path.is_file():
                logger.error(f"{name}: file not found")
                failures += 1
                continue
            uploads.append(_read_upload(path))

        intake = session.ingest(uploads)
        for rejection in intake.rejected:
            logger.error(rejection.reason)
        failures += len(intake.rejected)
        if not intake.accepted:
            return 1

        def report(event, job):
            if event == "updated":
                logger.info(f"{job.source_name}: {job.status.value} {job.progress}%")

        unsubscribe = session.registry.subscribe(report)
        try:
            summary = session.orchestrator.run_all()
        finally:
            unsubscribe()

        for job_id in summary.failed:
            job = session.registry.get(job_id)
            logger.error(f"{job.source_name}: {job.error_detail}")
        failures += len(summary.failed)

        written: Set[str] = set()

        def write(download: Download) -> None:
            target = _free_target(output_dir, download.filename, written)
            target.write_bytes(download.data)
            print(f"Wrote {target}")

        session.results.download_all(write, delay=args.stagger)
    finally:
        session.close()
    return 1 if failures else 0


def _run_remote(args: argparse.Namespace, output_dir: Path) -> int:
    failures = 0
    written: Set[str] = set()
    for name in args.images:
        try:
            video = convert_remote(args.remote, name, duration=args.duration)
        except (ConversionFailed, OSError) as e:
            logger.error(f"{name}: {e}")
            failures += 1
            continue
        target = _free_target(output_dir, suggested_video_name(Path(name).name), written)
        target.write_bytes(video)
        print(f"Wrote {target}")
    return 1 if failures else 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO), format=config.LOG_FORMAT)
    args = parse_args(argv)
    try:
        args.duration = config.normalize_duration(args.duration)
    except ValueError as e:
        logger.error(str(e))
        return 2

    output_dir = Path(args.output_dir)
    ensure_dir(output_dir)
    if args.remote:
        return _run_remote(args, output_dir)
    return _run_local(args, output_dir)


if __name__ == "__main__":
    sys.exit(main())
