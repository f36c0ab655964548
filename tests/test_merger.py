"""Tests for ffmpeg supervision, run against a stand-in ffmpeg script."""
import asyncio
import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

from clipfetch.services.errors import MergeTimeoutError, NetworkError, TranscodeFailureError
from clipfetch.services.janitor import ResourceJanitor
from clipfetch.services.merger import MergeChannels, TranscodeMerger
from clipfetch.services.progress import ProgressTracker
from clipfetch.services.pytube_service import ElementaryStream

FAKE_FFMPEG = textwrap.dedent(
    """\
    #!{python}
    import os
    import sys
    import time

    args = sys.argv[1:]
    inputs = [args[i + 1] for i, arg in enumerate(args) if arg == "-i"]
    progress = next((args[i + 1] for i, arg in enumerate(args) if arg == "-progress"), None)
    output = args[-1]

    time.sleep(float(os.environ.get("FAKE_FFMPEG_SLEEP", "0")))


    def read(spec):
        if spec.startswith("pipe:"):
            with os.fdopen(int(spec[5:]), "rb") as f:
                return f.read()
        with open(spec, "rb") as f:
            return f.read()


    data = [read(spec) for spec in inputs]
    if progress:
        with os.fdopen(int(progress[5:]), "w") as p:
            p.write("frame=1\\nfps=10\\nspeed=1x\\nprogress=continue\\n")
            p.flush()
            p.write("frame=2\\nfps=12\\nspeed=1.5x\\nprogress=end\\n")

    with open(output, "wb") as f:
        f.write(b"MERGED:" + b"|".join(data))
    sys.exit(int(os.environ.get("FAKE_FFMPEG_EXIT", "0")))
    """
)


@pytest.fixture
def fake_ffmpeg(tmp_path: Path) -> str:
    script = tmp_path / "fake-ffmpeg"
    script.write_text(FAKE_FFMPEG.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


@pytest.fixture
def merger(janitor: ResourceJanitor, fake_ffmpeg: str) -> TranscodeMerger:
    return TranscodeMerger(janitor, binary=fake_ffmpeg)


def _stream(kind: str, *blocks: bytes, error: Exception | None = None) -> ElementaryStream:
    def _blocks():
        yield from blocks
        if error is not None:
            raise error

    return ElementaryStream(
        kind=kind,
        total_bytes=sum(len(b) for b in blocks),
        open_chunks=_blocks,
        chunk_size=4,
    )


class TestCommands:
    """Tests for ffmpeg argument construction."""

    def test_file_merge_command(self, janitor: ResourceJanitor) -> None:
        cmd = TranscodeMerger(janitor, binary="ffmpeg").build_file_merge_command(
            Path("a.m4a"), Path("v.mp4"), Path("out.mp4")
        )
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-c:v") + 1] == "copy"
        assert cmd[cmd.index("-c:a") + 1] == "aac"
        assert cmd[-1] == "out.mp4"

    def test_piped_merge_command_addresses_child_fds(self, janitor: ResourceJanitor) -> None:
        channels = MergeChannels.open()
        try:
            cmd = TranscodeMerger(janitor, binary="ffmpeg").build_piped_merge_command(
                channels, Path("out.mp4")
            )
        finally:
            channels.close()

        assert cmd[cmd.index("-progress") + 1] == f"pipe:{channels.progress.write_fd}"
        inputs = [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "-i"]
        assert inputs == [f"pipe:{channels.audio.read_fd}", f"pipe:{channels.video.read_fd}"]
        assert cmd[cmd.index("-map") + 1] == "0:a"


class TestMergeFiles:
    """Tests for the file-to-file merge."""

    def test_success(self, merger: TranscodeMerger, janitor: ResourceJanitor, tmp_path: Path) -> None:
        audio = tmp_path / "a.m4a"
        video = tmp_path / "v.mp4"
        audio.write_bytes(b"AUDIO")
        video.write_bytes(b"VIDEO")
        output = janitor.new_artifact(".mp4")

        asyncio.run(merger.merge_files(audio, video, output))

        assert output.read_bytes() == b"MERGED:AUDIO|VIDEO"

    def test_non_zero_exit(
        self,
        merger: TranscodeMerger,
        janitor: ResourceJanitor,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A failed merge is a TranscodeFailure and leaves no partial output."""
        monkeypatch.setenv("FAKE_FFMPEG_EXIT", "1")
        audio = tmp_path / "a.m4a"
        video = tmp_path / "v.mp4"
        audio.write_bytes(b"A")
        video.write_bytes(b"V")
        output = janitor.new_artifact(".mp4")

        with pytest.raises(TranscodeFailureError) as exc_info:
            asyncio.run(merger.merge_files(audio, video, output))

        assert exc_info.value.returncode == 1
        assert not output.exists()

    def test_spawn_error(self, janitor: ResourceJanitor, tmp_path: Path) -> None:
        merger = TranscodeMerger(janitor, binary=str(tmp_path / "missing-ffmpeg"))

        with pytest.raises(TranscodeFailureError, match="Failed to start"):
            asyncio.run(merger.merge_files(tmp_path / "a", tmp_path / "v", tmp_path / "o.mp4"))


class TestMergePiped:
    """Tests for the live piped merge."""

    def test_feeds_both_streams_and_tracks_progress(
        self, merger: TranscodeMerger, janitor: ResourceJanitor
    ) -> None:
        tracker = ProgressTracker(enabled=False)
        audio = _stream("audio", b"aaaa", b"aa")
        video = _stream("video", b"vvvvvvvv")
        output = janitor.new_artifact(".mp4")

        asyncio.run(merger.merge_piped(audio, video, output, tracker, timeout=30))

        assert output.read_bytes() == b"MERGED:aaaaaa|vvvvvvvv"
        assert tracker.snapshot.merge == {
            "frame": 2,
            "fps": 12,
            "speed": "1.5x",
            "progress": "end",
        }
        assert (audio.downloaded, video.downloaded) == (6, 8)

    def test_non_zero_exit_removes_output(
        self,
        merger: TranscodeMerger,
        janitor: ResourceJanitor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("FAKE_FFMPEG_EXIT", "1")
        output = janitor.new_artifact(".mp4")

        with pytest.raises(TranscodeFailureError) as exc_info:
            asyncio.run(
                merger.merge_piped(
                    _stream("audio", b"a"), _stream("video", b"v"), output,
                    ProgressTracker(enabled=False), timeout=30,
                )
            )

        assert not isinstance(exc_info.value, MergeTimeoutError)
        assert not output.exists()

    def test_timeout_kills_process(
        self,
        merger: TranscodeMerger,
        janitor: ResourceJanitor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A merge over its wall-clock limit is terminated and reported as a timeout."""
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "30")
        output = janitor.new_artifact(".mp4")

        with pytest.raises(MergeTimeoutError) as exc_info:
            asyncio.run(
                merger.merge_piped(
                    _stream("audio", b"a"), _stream("video", b"v"), output,
                    ProgressTracker(enabled=False), timeout=0.5,
                )
            )

        assert exc_info.value.code == "MERGE_TIMEOUT"
        assert not output.exists()

    def test_stream_error_surfaces_classified(
        self,
        merger: TranscodeMerger,
        janitor: ResourceJanitor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("FAKE_FFMPEG_SLEEP", "2")
        output = janitor.new_artifact(".mp4")
        audio = _stream("audio", b"aaaa", error=ConnectionResetError("peer reset"))

        with pytest.raises(NetworkError):
            asyncio.run(
                merger.merge_piped(
                    audio, _stream("video", b"v"), output,
                    ProgressTracker(enabled=False), timeout=30,
                )
            )

        assert not output.exists()

    def test_channel_close_is_idempotent(self) -> None:
        """A parent end handed off with take_parent_fd is never closed twice."""
        channels = MergeChannels.open()
        handed_off = channels.audio.take_parent_fd()

        channels.close_child_ends()
        channels.close()
        channels.close()

        os.fstat(handed_off)
        os.close(handed_off)
        with pytest.raises(OSError):
            os.fstat(channels.video.write_fd)
