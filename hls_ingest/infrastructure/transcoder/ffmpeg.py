"""FFmpeg HLS transcoder process management.

One FFmpeg process per publishing session reads an FLV stream from its
standard input and writes a rolling HLS playlist plus segments into the
session's output directory. :class:`TranscoderProcess` owns the process
handle and the write end of its stdin pipe and releases both exactly once.
"""

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog

from hls_ingest.core.config import Settings
from hls_ingest.domain.exceptions import ForwardingError, StartupError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FFmpegHLSCommand:
    """Fixed FFmpeg argument profile: FLV on stdin, HLS on disk."""

    binary: str = "ffmpeg"
    video_codec: str = "copy"
    audio_codec: str = "aac"
    hls_time: int = 2
    hls_list_size: int = 5
    hls_flags: str = "delete_segments"
    playlist_name: str = "index.m3u8"
    loglevel: Optional[str] = None
    input_fflags: Optional[str] = None
    input_flags: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "FFmpegHLSCommand":
        return cls(
            binary=settings.ffmpeg_binary,
            video_codec=settings.video_codec,
            audio_codec=settings.audio_codec,
            hls_time=settings.hls_segment_seconds,
            hls_list_size=settings.hls_list_size,
            hls_flags=settings.hls_flags,
            playlist_name=settings.playlist_name,
            loglevel=settings.ffmpeg_loglevel,
            input_fflags=settings.ffmpeg_input_fflags,
            input_flags=settings.ffmpeg_input_flags,
        )

    def playlist_path(self, output_dir: Path) -> Path:
        return Path(output_dir) / self.playlist_name

    def build(self, output_dir: Path) -> List[str]:
        """Build the command line for one stream directory."""
        cmd = [self.binary]

        if self.loglevel:
            cmd.extend(["-loglevel", self.loglevel])

        # Input options apply to pipe:0 and must precede -i
        if self.input_fflags:
            cmd.extend(["-fflags", self.input_fflags])
        if self.input_flags:
            cmd.extend(["-flags", self.input_flags])
        cmd.extend(["-i", "pipe:0"])
        cmd.extend(["-c:v", self.video_codec])
        cmd.extend(["-c:a", self.audio_codec])

        cmd.extend(
            [
                "-f",
                "hls",
                "-hls_time",
                str(self.hls_time),
                "-hls_list_size",
                str(self.hls_list_size),
            ]
        )
        if self.hls_flags:
            cmd.extend(["-hls_flags", self.hls_flags])

        cmd.append(str(self.playlist_path(output_dir)))
        return cmd


class TranscoderProcess:
    """Process handle plus the writable end of its stdin.

    ``write`` and ``release`` may interleave (a frame write suspended on pipe
    backpressure while a shutdown closes the session). The released flag is
    checked and set with no suspension point in between, so no write starts
    after release begins; a write already suspended in ``drain`` is woken by
    the closed transport and reports ``ForwardingError``.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        command: Optional[List[str]] = None,
        log_tasks: Optional[List[asyncio.Task]] = None,
        relay_timeout: float = 1.0,
    ):
        if process.stdin is None:
            raise ValueError("Transcoder process was started without a stdin pipe")
        self._process = process
        self._stdin = process.stdin
        self.command = command or []
        self._log_tasks = log_tasks or []
        self.relay_timeout = relay_timeout
        self._released = False
        self._release_lock = asyncio.Lock()
        self._log = logger.bind(pid=process.pid)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return self._process.returncode is None

    @property
    def released(self) -> bool:
        return self._released

    async def write(self, data: bytes) -> None:
        """Write to the transcoder's stdin, suspending while the pipe is full.

        Raises:
            ForwardingError: if the pipe was released or the transcoder went away.
        """
        if self._released:
            raise ForwardingError("Transcoder pipe already released")
        try:
            self._stdin.write(data)
            await self._stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ForwardingError(f"Transcoder pipe closed: {e}") from e

    async def release(self) -> bool:
        """Close stdin and force-kill the process; runs at most once.

        Does not wait for the process to exit; output relays get up to
        ``relay_timeout`` seconds to drain before they are cancelled.
        Returns True if this call performed the release.
        """
        async with self._release_lock:
            if self._released:
                return False
            self._released = True

            try:
                self._stdin.close()
            except (OSError, RuntimeError) as e:
                self._log.warning("Error closing transcoder stdin", error=str(e))

            if self._process.returncode is None:
                try:
                    self._process.kill()
                    self._log.info("Killed transcoder")
                except ProcessLookupError:
                    self._log.debug("Transcoder already exited")
            else:
                self._log.info("Transcoder had already exited", returncode=self._process.returncode)

            await self._finish_relays()
            return True

    async def _finish_relays(self) -> None:
        # Output pipes reach EOF once the process is gone
        if not self._log_tasks:
            return
        done, pending = await asyncio.wait(self._log_tasks, timeout=self.relay_timeout)
        for task in pending:
            task.cancel()
        if pending:
            self._log.warning("Cancelled transcoder output relay", count=len(pending))
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                self._log.error("Transcoder output relay failed", error=str(task.exception()))

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await self._process.wait()


_LINE_BREAK = re.compile(rb"[\r\n]")
# Longest run kept while waiting for a line break; progress lines end in \r
MAX_RELAY_LINE = 8192


def _emit_line(log, stream_name: str, raw: bytes) -> None:
    text = raw.decode("utf-8", errors="replace").rstrip()
    if not text:
        return
    lowered = text.lower()
    if "error" in lowered:
        log.error("ffmpeg", stream=stream_name, line=text)
    elif "warning" in lowered:
        log.warning("ffmpeg", stream=stream_name, line=text)
    else:
        log.debug("ffmpeg", stream=stream_name, line=text)


async def _relay_output(
    stream: asyncio.StreamReader, log, stream_name: str, *, chunk_size: int = 4096
) -> None:
    """Relay FFmpeg output to the logger, splitting on ``\\r`` and ``\\n``.

    Reads until EOF so the pipe never fills up. A run longer than
    ``MAX_RELAY_LINE`` without a break is logged as it stands.
    """
    pending = b""
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        *lines, pending = _LINE_BREAK.split(pending + chunk)
        for line in lines:
            _emit_line(log, stream_name, line)
        if len(pending) > MAX_RELAY_LINE:
            _emit_line(log, stream_name, pending)
            pending = b""
    _emit_line(log, stream_name, pending)


class FFmpegSpawner:
    """Starts one FFmpeg HLS process per stream directory."""

    def __init__(self, command: FFmpegHLSCommand, *, output_mode: str = "inherit"):
        if output_mode not in ("inherit", "log"):
            raise ValueError(f"Unknown transcoder output mode: {output_mode}")
        self.command = command
        self.output_mode = output_mode

    @classmethod
    def from_settings(cls, settings: Settings) -> "FFmpegSpawner":
        return cls(
            FFmpegHLSCommand.from_settings(settings),
            output_mode=settings.transcoder_output,
        )

    async def spawn(self, output_dir: Path) -> TranscoderProcess:
        """Start the transcoder writing into ``output_dir``.

        Raises:
            StartupError: if the binary is missing, not executable, or the OS
                refuses to create the process.
        """
        cmd = self.command.build(output_dir)
        # None inherits this process's stdout/stderr
        output = asyncio.subprocess.PIPE if self.output_mode == "log" else None

        logger.info("Starting transcoder", command=" ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=output,
                stderr=output,
            )
        except FileNotFoundError as e:
            raise StartupError(f"Transcoder binary not found: {self.command.binary}") from e
        except PermissionError as e:
            raise StartupError(f"Transcoder binary not executable: {self.command.binary}") from e
        except OSError as e:
            raise StartupError(f"Failed to start transcoder: {e}") from e

        log_tasks = []
        if self.output_mode == "log":
            log = logger.bind(pid=process.pid)
            log_tasks = [
                asyncio.create_task(_relay_output(process.stdout, log, "stdout")),
                asyncio.create_task(_relay_output(process.stderr, log, "stderr")),
            ]

        logger.info("Transcoder started", pid=process.pid, output_dir=str(output_dir))
        return TranscoderProcess(process, command=cmd, log_tasks=log_tasks)
