import os
import shutil
import stat
import subprocess
import sys

import pytest

from topicbridge.errors import TranscodeFailed, TranscodeUnavailable
from topicbridge.transcoder import MediaTranscoder, probe_ffmpeg, safe_filename

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell scripts")

# Stands in for ffmpeg: copies the file after -i to the last argument and
# records the argument list next to itself.
FAKE_TRANSCODER = """#!/bin/sh
if [ "$1" = "-version" ]; then exit 0; fi
prev=""
src=""
for arg in "$@"; do
  if [ "$prev" = "-i" ]; then src="$arg"; fi
  prev="$arg"
  last="$arg"
done
echo "$@" > "$(dirname "$0")/args.txt"
cp "$src" "$last"
"""


@pytest.fixture
def fake_binary(tmp_path):
    path = tmp_path / "bin" / "fake-ffmpeg"
    path.parent.mkdir()
    path.write_text(FAKE_TRANSCODER)
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


@pytest.fixture
def scratch(tmp_path):
    return str(tmp_path / "scratch")


def _args(fake_binary):
    with open(os.path.join(os.path.dirname(fake_binary), "args.txt")) as handle:
        return handle.read()


@pytest.mark.anyio
async def test_version_check_detects_binary(fake_binary):
    assert await probe_ffmpeg(fake_binary)
    assert not await probe_ffmpeg("/nonexistent/ffmpeg")


@pytest.mark.anyio
async def test_missing_binary_means_unavailable(scratch):
    transcoder = MediaTranscoder(scratch, binary="/nonexistent/ffmpeg")
    assert not transcoder.available
    assert await transcoder.probe() is False
    assert await transcoder.to_webp(b"static") == b"static"


@pytest.mark.anyio
async def test_availability_check_deferred_until_first_use(fake_binary, scratch):
    transcoder = MediaTranscoder(scratch, binary=fake_binary)
    assert not transcoder.available
    assert await transcoder.probe() is True
    assert transcoder.available


@pytest.mark.anyio
async def test_to_mp4_uses_sticker_canvas(fake_binary, scratch):
    transcoder = MediaTranscoder(scratch, binary=fake_binary)
    assert await transcoder.to_mp4(b"webp-bytes") == b"webp-bytes"
    args = _args(fake_binary)
    assert "pad=512:512" in args
    assert "libx264" in args and "yuv420p" in args
    assert "-t 3" in args and "-r 30" in args
    assert os.listdir(scratch) == []


@pytest.mark.anyio
async def test_to_webp_animated_loops(fake_binary, scratch):
    transcoder = MediaTranscoder(scratch, binary=fake_binary, available=True)
    assert await transcoder.to_webp(b"webm-bytes", animated=True) == b"webm-bytes"
    args = _args(fake_binary)
    assert "libwebp" in args and "-loop 0" in args and "-quality 80" in args
    assert os.listdir(scratch) == []


@pytest.mark.anyio
async def test_round_note_crops_to_240(fake_binary, scratch):
    transcoder = MediaTranscoder(scratch, binary=fake_binary, available=True)
    assert await transcoder.to_round_video_note(b"video") == b"video"
    args = _args(fake_binary)
    assert "crop=240:240" in args and "-t 60" in args
    assert os.listdir(scratch) == []


@pytest.mark.anyio
async def test_failing_transcoder_cleans_up(scratch):
    false_binary = shutil.which("false")
    if false_binary is None:
        pytest.skip("false not available")
    transcoder = MediaTranscoder(scratch, binary=false_binary, available=True)
    before = set(os.listdir(scratch))
    with pytest.raises(TranscodeFailed):
        await transcoder.to_mp4(b"data")
    with pytest.raises(TranscodeFailed):
        await transcoder.to_webp(b"data", animated=True)
    assert await transcoder.to_round_video_note(b"original") == b"original"
    assert set(os.listdir(scratch)) == before


@pytest.mark.anyio
async def test_unavailable_transcoder_degrades(scratch):
    transcoder = MediaTranscoder(scratch, binary="/nonexistent/ffmpeg", available=False)
    with pytest.raises(TranscodeUnavailable):
        await transcoder.to_mp4(b"data")
    with pytest.raises(TranscodeUnavailable):
        await transcoder.to_webp(b"data", animated=True)
    assert await transcoder.to_webp(b"static") == b"static"
    assert await transcoder.to_round_video_note(b"video") == b"video"
    assert os.listdir(scratch) == []


@pytest.mark.anyio
async def test_hung_transcoder_times_out(tmp_path, scratch):
    path = tmp_path / "slow-ffmpeg"
    path.write_text("#!/bin/sh\nsleep 30\n")
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    transcoder = MediaTranscoder(scratch, binary=str(path), available=True, timeout=0.5)
    with pytest.raises(TranscodeFailed):
        await transcoder.to_mp4(b"data")
    assert os.listdir(scratch) == []


def _has_encoders(*names):
    result = subprocess.run(["ffmpeg", "-hide_banner", "-encoders"], capture_output=True, text=True)
    return all(name in result.stdout for name in names)


@pytest.mark.anyio
@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
async def test_real_ffmpeg_sticker_conversions(tmp_path, scratch):
    if not _has_encoders("libwebp", "libx264"):
        pytest.skip("ffmpeg built without libwebp or libx264")
    image = tmp_path / "sticker.webp"
    subprocess.run(
        ["ffmpeg", "-y", "-f", "lavfi", "-i", "color=c=red:s=64x64", "-frames:v", "1",
         "-c:v", "libwebp", str(image)],
        check=True,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    transcoder = MediaTranscoder(scratch)
    webp = await transcoder.to_webp(image.read_bytes())
    assert webp[:4] == b"RIFF"
    video = await transcoder.to_mp4(webp)
    assert video
    assert os.listdir(scratch) == []


def test_safe_filename():
    assert safe_filename("../../etc/passwd", "bin") == "passwd.bin"
    assert safe_filename("report.pdf") == "report.pdf"
    assert safe_filename("", "bin") is None
    long_name = safe_filename("a" * 300 + ".txt")
    assert len(long_name) == 180 and long_name.endswith(".txt")
