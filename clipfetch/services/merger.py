"""ffmpeg supervision: file-to-file merges and live piped merges.

The piped merge hands ffmpeg three extra descriptors besides its inherited
stdout/stderr: a progress side-channel it writes ``key=value`` blocks to,
and one input channel per elementary stream. Descriptors keep their numbers
in the child (``pass_fds``), so ffmpeg addresses them as ``pipe:<fd>``.
"""
import asyncio
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger
from clipfetch.services.classifier import FailureOrigin, to_pipeline_error
from clipfetch.services.errors import MergeTimeoutError, TranscodeFailureError
from clipfetch.services.janitor import ResourceJanitor
from clipfetch.services.progress import ProgressTracker

if TYPE_CHECKING:
    from clipfetch.services.pytube_service import ElementaryStream

logger = get_logger(__name__)

TERMINATE_GRACE_SECONDS = 5.0
PROGRESS_DRAIN_SECONDS = 1.0
STDERR_TAIL_CHARS = 500


class ProcessState(str, Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    CLOSED = "closed"
    KILLED = "killed"
    ERRORED = "errored"


@dataclass
class PipeChannel:
    """One anonymous pipe shared with ffmpeg.

    ``child_reads`` says which end ffmpeg uses: inputs are read by the
    child, the progress side-channel is written by it.
    """

    name: str
    read_fd: int
    write_fd: int
    child_reads: bool
    _closed: set[int] = field(default_factory=set, repr=False)

    @classmethod
    def open(cls, name: str, child_reads: bool) -> "PipeChannel":
        read_fd, write_fd = os.pipe()
        return cls(name=name, read_fd=read_fd, write_fd=write_fd, child_reads=child_reads)

    @property
    def child_fd(self) -> int:
        return self.read_fd if self.child_reads else self.write_fd

    @property
    def parent_fd(self) -> int:
        return self.write_fd if self.child_reads else self.read_fd

    @property
    def spec(self) -> str:
        """ffmpeg URL addressing the child end."""
        return f"pipe:{self.child_fd}"

    def take_parent_fd(self) -> int:
        """Transfer ownership of the parent end to the caller."""
        self._closed.add(self.parent_fd)
        return self.parent_fd

    def _close(self, fd: int) -> None:
        if fd in self._closed:
            return
        self._closed.add(fd)
        try:
            os.close(fd)
        except OSError:
            pass

    def close_child_end(self) -> None:
        self._close(self.child_fd)

    def close(self) -> None:
        self._close(self.child_fd)
        self._close(self.parent_fd)


@dataclass
class MergeChannels:
    """Named descriptor table fixed at spawn time."""

    progress: PipeChannel
    audio: PipeChannel
    video: PipeChannel

    @classmethod
    def open(cls) -> "MergeChannels":
        opened: list[PipeChannel] = []
        try:
            for name, child_reads in (("progress", False), ("audio", True), ("video", True)):
                opened.append(PipeChannel.open(name, child_reads))
        except OSError:
            for channel in opened:
                channel.close()
            raise
        return cls(*opened)

    def __iter__(self):
        return iter((self.progress, self.audio, self.video))

    @property
    def child_fds(self) -> tuple[int, ...]:
        return tuple(channel.child_fd for channel in self)

    def close_child_ends(self) -> None:
        for channel in self:
            channel.close_child_end()

    def close(self) -> None:
        for channel in self:
            channel.close()


@dataclass
class MergeProcessHandle:
    """A spawned ffmpeg process and the channels it was given."""

    process: asyncio.subprocess.Process
    channels: MergeChannels | None = None
    state: ProcessState = ProcessState.SPAWNED

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def _signal(self, terminate: bool) -> bool:
        if self.process.returncode is not None:
            return False
        try:
            if terminate:
                self.process.terminate()
            else:
                self.process.kill()
        except ProcessLookupError:
            return False
        self.state = ProcessState.KILLED
        return True

    def kill(self) -> None:
        """SIGKILL the process if it is still running; otherwise do nothing."""
        if self._signal(terminate=False):
            logger.info(f"Killed ffmpeg process {self.process.pid}")

    async def terminate(self, grace: float = TERMINATE_GRACE_SECONDS) -> None:
        """SIGTERM, then SIGKILL if the process outlives *grace* seconds."""
        if not self._signal(terminate=True):
            return
        try:
            await asyncio.wait_for(self.process.wait(), grace)
        except asyncio.TimeoutError:
            self.kill()
            await self.process.wait()

    def mark_closed(self) -> None:
        if self.state is not ProcessState.KILLED:
            self.state = (
                ProcessState.CLOSED if self.process.returncode == 0 else ProcessState.ERRORED
            )


def _pump_blocking(stream: "ElementaryStream", fd: int, stop: threading.Event) -> int:
    """Copy *stream* into the pipe *fd* (owned here), returning bytes written."""
    written_total = 0
    try:
        for chunk in stream.iter_chunks():
            if stop.is_set():
                break
            view = memoryview(chunk)
            while view:
                written = os.write(fd, view)
                view = view[written:]
            written_total += len(chunk)
    finally:
        os.close(fd)
    return written_total


class TranscodeMerger:
    """Combine one audio and one video input into a single mp4 file."""

    def __init__(self, janitor: ResourceJanitor, binary: str | None = None) -> None:
        self.janitor = janitor
        self.binary = binary or settings.FFMPEG_BINARY

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_file_merge_command(
        self, audio_path: Path, video_path: Path, output_path: Path
    ) -> list[str]:
        """Video is stream-copied, audio re-encoded to AAC."""
        return [
            self.binary,
            "-hide_banner",
            "-loglevel", "error",
            "-nostdin",
            "-y",
            "-i", str(audio_path),
            "-i", str(video_path),
            "-map", "0:a",
            "-map", "1:v",
            "-c:v", "copy",
            "-c:a", "aac",
            "-strict", "experimental",
            str(output_path),
        ]

    def build_piped_merge_command(self, channels: MergeChannels, output_path: Path) -> list[str]:
        return [
            self.binary,
            # Only fatal messages on the inherited stderr
            "-loglevel", "8",
            "-hide_banner",
            "-nostdin",
            "-y",
            "-progress", channels.progress.spec,
            "-i", channels.audio.spec,
            "-i", channels.video.spec,
            "-map", "0:a",
            "-map", "1:v",
            "-c:v", "copy",
            str(output_path),
        ]

    # ------------------------------------------------------------------
    # File-to-file merge (primary strategy)
    # ------------------------------------------------------------------

    async def merge_files(
        self,
        audio_path: Path,
        video_path: Path,
        output_path: Path,
        timeout: float | None = None,
    ) -> Path:
        """Merge two downloaded files into *output_path*.

        Raises:
            TranscodeFailureError: On spawn error, non-zero exit or timeout
        """
        timeout = timeout or settings.FILE_MERGE_TIMEOUT_SECONDS
        cmd = self.build_file_merge_command(audio_path, video_path, output_path)
        logger.info(f"Merging {audio_path.name} + {video_path.name} -> {output_path.name}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.janitor.discard(output_path)
            raise TranscodeFailureError(f"Failed to start ffmpeg: {e}") from e

        handle = MergeProcessHandle(process=process, state=ProcessState.RUNNING)
        self.janitor.track_process(handle)

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            await handle.terminate()
            self.janitor.discard(output_path)
            raise TranscodeFailureError(f"FFmpeg merge timed out after {timeout:g} seconds")
        except BaseException:
            handle.kill()
            self.janitor.discard(output_path)
            raise

        handle.mark_closed()
        if process.returncode != 0:
            stderr_text = (stderr or b"").decode(errors="replace").strip()
            self.janitor.discard(output_path)
            logger.error(f"FFmpeg merge failed ({process.returncode}): {stderr_text[-STDERR_TAIL_CHARS:]}")
            raise TranscodeFailureError(
                f"FFmpeg merge failed with code {process.returncode}",
                returncode=process.returncode,
            )
        return output_path

    # ------------------------------------------------------------------
    # Piped merge (secondary strategy)
    # ------------------------------------------------------------------

    async def _read_progress(self, pipe: BinaryIO, tracker: ProgressTracker) -> None:
        """Feed side-channel blocks into *tracker* until ffmpeg closes it."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), pipe
        )
        block: list[str] = []
        try:
            while line := await reader.readline():
                text = line.decode(errors="replace")
                block.append(text)
                # ffmpeg ends every report with progress=continue|end
                if text.startswith("progress="):
                    tracker.update_merge("".join(block))
                    block.clear()
            if block:
                tracker.update_merge("".join(block))
        finally:
            transport.close()

    async def merge_piped(
        self,
        audio: "ElementaryStream",
        video: "ElementaryStream",
        output_path: Path,
        tracker: ProgressTracker,
        timeout: float | None = None,
    ) -> Path:
        """Spawn ffmpeg and feed both live streams into it concurrently.

        Raises:
            MergeTimeoutError: If ffmpeg is still running after *timeout*
            TranscodeFailureError: On spawn error or non-zero exit
            ClipfetchError: The classified stream error if a feed fails
        """
        timeout = timeout or settings.MERGE_TIMEOUT_SECONDS
        channels = MergeChannels.open()
        cmd = self.build_piped_merge_command(channels, output_path)
        logger.info(f"Starting piped merge into {output_path.name}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                pass_fds=channels.child_fds,
            )
        except OSError as e:
            channels.close()
            self.janitor.discard(output_path)
            raise TranscodeFailureError(f"Failed to start ffmpeg: {e}") from e
        finally:
            channels.close_child_ends()

        handle = MergeProcessHandle(process=process, channels=channels, state=ProcessState.RUNNING)
        self.janitor.track_process(handle)

        loop = asyncio.get_running_loop()
        stop = threading.Event()
        progress_pipe = os.fdopen(channels.progress.take_parent_fd(), "rb", buffering=0)
        progress_task = asyncio.create_task(self._read_progress(progress_pipe, tracker))
        # run_in_executor submits immediately, so each pump thread always
        # starts and closes the descriptor it was handed.
        feeds = {
            loop.run_in_executor(
                None, _pump_blocking, stream, channel.take_parent_fd(), stop
            ): channel.name
            for stream, channel in ((audio, channels.audio), (video, channels.video))
        }
        wait_task = asyncio.create_task(process.wait())

        try:
            await asyncio.wait_for(self._supervise(wait_task, feeds), timeout)
            # The side-channel hits EOF once ffmpeg has exited; keep its last block.
            await asyncio.wait({progress_task}, timeout=PROGRESS_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(f"Merge exceeded {timeout:g}s; terminating ffmpeg {process.pid}")
            stop.set()
            await handle.terminate()
            self.janitor.discard(output_path)
            raise MergeTimeoutError(timeout)
        except BaseException:
            stop.set()
            handle.kill()
            await asyncio.wait({wait_task}, timeout=TERMINATE_GRACE_SECONDS)
            self.janitor.discard(output_path)
            raise
        finally:
            wait_task.cancel()
            progress_task.cancel()
            await asyncio.gather(progress_task, return_exceptions=True)
            progress_pipe.close()
            for feed in feeds:
                # Feeds outliving ffmpeg end on a broken pipe; retrieve it.
                feed.add_done_callback(lambda f: f.cancelled() or f.exception())
            channels.close()

        handle.mark_closed()
        if process.returncode != 0:
            self.janitor.discard(output_path)
            raise TranscodeFailureError(
                f"FFmpeg merge failed with code {process.returncode}",
                returncode=process.returncode,
            )
        logger.info(f"Piped merge finished: {output_path.name}")
        return output_path

    async def _supervise(
        self, wait_task: asyncio.Task, feeds: dict[asyncio.Future, str]
    ) -> int:
        """Wait for ffmpeg to exit, failing fast if a feed errors first."""
        pending: set[asyncio.Future] = {wait_task, *feeds}
        while wait_task in pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for future in done:
                if future is wait_task:
                    continue
                exc = future.exception()
                if exc is not None and not isinstance(exc, BrokenPipeError):
                    logger.error(f"{feeds[future].capitalize()} stream failed: {exc!r}")
                    raise to_pipeline_error(exc, FailureOrigin.SECONDARY)
        return wait_task.result()
