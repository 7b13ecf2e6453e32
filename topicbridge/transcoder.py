import asyncio
import itertools
import logging
import os
import shutil
import time

from .errors import TranscodeFailed, TranscodeUnavailable

STICKER_FILTER = (
    "scale=512:512:force_original_aspect_ratio=decrease,"
    "pad=512:512:(ow-iw)/2:(oh-ih)/2"
)
VIDEO_NOTE_FILTER = "scale=240:240:force_original_aspect_ratio=increase,crop=240:240"

_sequence = itertools.count()


async def probe_ffmpeg(binary="ffmpeg", timeout=10):
    if shutil.which(binary) is None:
        return False
    try:
        proc = await asyncio.create_subprocess_exec(
            binary,
            "-version",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False
    try:
        returncode = await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return False
    return returncode == 0


def ensure_tmp_dir(path):
    os.makedirs(path, exist_ok=True)
    return path


def cleanup_file(path):
    if not path:
        return
    try:
        os.unlink(path)
    except OSError:
        pass


class MediaTranscoder:
    def __init__(self, tmp_dir, binary="ffmpeg", available=None, timeout=60):
        self.tmp_dir = ensure_tmp_dir(tmp_dir)
        self.binary = binary
        self.timeout = timeout
        # None until probed; the probe runs once, on first use or from Bridge.start()
        self._available = None if available is None else bool(available)

    @property
    def available(self):
        return bool(self._available)

    async def probe(self):
        if self._available is None:
            self._available = await probe_ffmpeg(self.binary)
            if not self._available:
                logging.warning("ffmpeg not available; animated sticker conversion will be limited")
        return self._available

    def _scratch_path(self, role, ext):
        stamp = int(time.time() * 1000)
        name = f"{role}_{stamp}_{os.getpid()}_{next(_sequence)}.{ext}"
        return os.path.join(self.tmp_dir, name)

    async def _run(self, data, in_ext, out_ext, args):
        input_path = self._scratch_path("input", in_ext)
        output_path = self._scratch_path("output", out_ext)
        try:
            with open(input_path, "wb") as handle:
                handle.write(data)
            cmd = [self.binary, "-y", "-i", input_path, *args, output_path]
            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise TranscodeFailed(f"Could not start {self.binary}: {exc}") from exc
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                proc.kill()
                await proc.wait()
                raise TranscodeFailed(f"{self.binary} timed out after {self.timeout}s") from exc
            if proc.returncode != 0:
                tail = (stderr or b"").decode("utf-8", "replace")[-300:]
                raise TranscodeFailed(f"{self.binary} exited with {proc.returncode}: {tail}")
            try:
                with open(output_path, "rb") as handle:
                    return handle.read()
            except OSError as exc:
                raise TranscodeFailed(f"{self.binary} produced no output") from exc
        finally:
            cleanup_file(input_path)
            cleanup_file(output_path)

    async def to_mp4(self, sticker_bytes):
        if not await self.probe():
            raise TranscodeUnavailable("ffmpeg not available for animated sticker conversion")
        return await self._run(
            sticker_bytes,
            "webp",
            "mp4",
            ["-vf", STICKER_FILTER, "-c:v", "libx264", "-pix_fmt", "yuv420p", "-t", "3", "-r", "30"],
        )

    async def to_webp(self, sticker_bytes, animated=False):
        if animated:
            if not await self.probe():
                raise TranscodeUnavailable("ffmpeg not available for animated sticker conversion")
            args = [
                "-vf", STICKER_FILTER,
                "-c:v", "libwebp",
                "-quality", "80",
                "-preset", "default",
                "-loop", "0",
                "-t", "3",
            ]
            return await self._run(sticker_bytes, "webm", "webp", args)
        if not await self.probe():
            return sticker_bytes
        return await self._run(sticker_bytes, "webp", "webp", ["-vf", STICKER_FILTER])

    async def to_round_video_note(self, video_bytes):
        if not await self.probe():
            return video_bytes
        try:
            return await self._run(
                video_bytes,
                "mp4",
                "mp4",
                ["-vf", VIDEO_NOTE_FILTER, "-c:v", "libx264", "-pix_fmt", "yuv420p", "-r", "30", "-t", "60"],
            )
        except (TranscodeFailed, OSError) as exc:
            logging.warning("Failed to convert video note, sending as regular video: %s", exc)
            return video_bytes


def safe_filename(name, default_suffix=None):
    if not name:
        return None
    name = os.path.basename(name)
    name = name.replace("\x00", "")
    name = name.replace("/", "_").replace("\\", "_").strip()
    if not name:
        return None
    root, ext = os.path.splitext(name)
    if not ext and default_suffix:
        ext = default_suffix if default_suffix.startswith(".") else f".{default_suffix}"
        name = f"{name}{ext}"
    max_len = 180
    if len(name) > max_len:
        root, ext = os.path.splitext(name)
        keep = max_len - len(ext)
        name = f"{root[:keep]}{ext}"
    return name
