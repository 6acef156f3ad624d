"""
Streaming transcode stage: remote source -> ffmpeg -> response body.

A ``TranscodeJob`` owns one ffmpeg process. A feeder task copies the source
stream into ffmpeg's stdin while ``relay()`` hands stdout chunks to the
caller in the order ffmpeg produces them. Nothing is buffered beyond one
chunk. Closing the relay early (client disconnect) kills ffmpeg outright.
"""
import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import httpx

from backend.app.core.config import settings
from backend.app.core.errors import TranscodeError
from backend.app.models.schemas import MediaFormat, VideoMetadata
from backend.app.services.jobs import JobController, job_controller
from backend.app.services.resolver import resolver
from backend.app.services.streamer import open_source

logger = logging.getLogger(__name__)

TIME_RE = re.compile(r'time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)')
LINE_SPLIT_RE = re.compile(r'[\r\n]+')
STDERR_TAIL_LINES = 20
PROGRESS_STEP = 10
DISCONNECT_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class TranscodeOptions:
    bitrate: int = settings.DEFAULT_BITRATE
    channels: int = settings.AUDIO_CHANNELS
    sample_rate: int = settings.AUDIO_SAMPLE_RATE
    output_format: str = "mp3"
    codec: str = "libmp3lame"


def build_ffmpeg_args(options: TranscodeOptions, ffmpeg_path: str = settings.FFMPEG_PATH) -> List[str]:
    return [
        ffmpeg_path, '-hide_banner', '-loglevel', 'info',
        '-i', 'pipe:0',
        '-vn',
        '-acodec', options.codec,
        '-b:a', f'{options.bitrate}k',
        '-ac', str(options.channels),
        '-ar', str(options.sample_rate),
        '-preset', 'ultrafast',
        '-threads', '0',
        '-f', options.output_format,
        'pipe:1',
    ]


async def wait_for_disconnect(is_disconnected: Callable[[], Awaitable[bool]], poll_interval: float = DISCONNECT_POLL_INTERVAL):
    while not await is_disconnected():
        await asyncio.sleep(poll_interval)


def parse_progress(line: str, duration: Optional[float]) -> Optional[float]:
    """Percent complete from an ffmpeg stats line, if it carries a timestamp."""
    match = TIME_RE.search(line)
    if not match or not duration:
        return None
    hours, minutes, seconds = match.groups()
    elapsed = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    return min(100.0, elapsed / duration * 100)


class TranscodeJob:
    def __init__(
        self,
        source: AsyncIterator[bytes],
        options: TranscodeOptions = TranscodeOptions(),
        duration: Optional[float] = None,
        label: str = "",
        spawn: Callable = asyncio.create_subprocess_exec,
        ffmpeg_path: str = settings.FFMPEG_PATH,
        chunk_size: int = settings.STREAM_CHUNK_SIZE,
        controller: Optional[JobController] = None,
    ):
        self.id = uuid.uuid4().hex
        self.source = source
        self.options = options
        self.duration = duration
        self.label = label or self.id[:8]
        self.spawn = spawn
        self.ffmpeg_path = ffmpeg_path
        self.chunk_size = chunk_size
        self.controller = controller
        self.process = None
        self.bytes_sent = 0
        self.source_error: Optional[BaseException] = None
        self.stderr_tail: List[str] = []
        self._feeder: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._pending: Optional[bytes] = None
        self._progress_step = -1
        self._closed = False

    async def start(self):
        args = build_ffmpeg_args(self.options, self.ffmpeg_path)
        try:
            self.process = await self.spawn(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError("ffmpeg is not installed or not available in PATH") from e
        logger.info("[%s] FFmpeg started: %s", self.label, ' '.join(args))
        if self.controller is not None:
            self.controller.register_job(self.id, self)
        self._feeder = asyncio.create_task(self._feed())
        self._stderr_task = asyncio.create_task(self._watch_stderr())

    async def _feed(self):
        stdin = self.process.stdin
        try:
            async for chunk in self.source:
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg went away; its exit status tells the story
            return
        except (httpx.HTTPError, TranscodeError, OSError) as e:
            logger.error("[%s] Stream error: %s", self.label, e)
            self.source_error = e
            self.kill()
            return
        try:
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def _watch_stderr(self):
        buffer = ''
        while True:
            data = await self.process.stderr.read(4096)
            if not data:
                break
            buffer += data.decode('utf-8', 'replace')
            *lines, buffer = LINE_SPLIT_RE.split(buffer)
            for line in lines:
                self._on_stderr_line(line)
        self._on_stderr_line(buffer)

    def _on_stderr_line(self, line: str):
        line = line.strip()
        if not line:
            return
        self.stderr_tail = (self.stderr_tail + [line])[-STDERR_TAIL_LINES:]
        percent = parse_progress(line, self.duration)
        if percent is not None and int(percent) // PROGRESS_STEP > self._progress_step:
            self._progress_step = int(percent) // PROGRESS_STEP
            logger.info("[%s] Processing: %d%% done", self.label, round(percent))

    async def _read_chunk(self) -> bytes:
        return await self.process.stdout.read(self.chunk_size)

    async def prime(self):
        """Start ffmpeg and wait for its first output bytes.

        Raises TranscodeError if the job fails before producing anything,
        while the caller can still answer with an error status.
        """
        try:
            await self.start()
            first = await self._read_chunk()
            if not first:
                await self._finish()
                raise TranscodeError("Transcoder produced no output")
        except BaseException:
            await self.close()
            raise
        self._pending = first

    async def relay(self) -> AsyncIterator[bytes]:
        if self.process is None:
            await self.prime()
        try:
            while True:
                if self._pending is not None:
                    chunk, self._pending = self._pending, None
                else:
                    chunk = await self._read_chunk()
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk
            await self._finish()
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("[%s] Client disconnected after %d bytes, killing transcoder", self.label, self.bytes_sent)
            raise
        finally:
            await self.close()

    async def prime_while_connected(
        self, is_disconnected: Callable[[], Awaitable[bool]], poll_interval: float = DISCONNECT_POLL_INTERVAL
    ) -> bool:
        """Prime the job unless the client hangs up first.

        Returns False, with ffmpeg already killed, when the client went away
        before the first output byte.
        """
        primer = asyncio.create_task(self.prime())
        watcher = asyncio.create_task(wait_for_disconnect(is_disconnected, poll_interval))
        try:
            done, _ = await asyncio.wait({primer, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (primer, watcher):
                if not task.done():
                    task.cancel()
        if primer in done:
            primer.result()
            return True

        logger.info("[%s] Client disconnected before first byte, killing transcoder", self.label)
        try:
            await primer
        except asyncio.CancelledError:
            pass
        await self.close()
        return False

    async def save(self, path: str) -> int:
        fh = await asyncio.to_thread(open, path, 'wb')
        try:
            async for chunk in self.relay():
                await asyncio.to_thread(fh.write, chunk)
        finally:
            await asyncio.to_thread(fh.close)
        return self.bytes_sent

    async def _finish(self):
        returncode = await self.process.wait()
        if self._feeder is not None and not self._feeder.done():
            self._feeder.cancel()
        await self._drain_tasks()
        if self.source_error is not None:
            raise TranscodeError(f"Source stream failed: {self.source_error}")
        if returncode != 0:
            detail = '\n'.join(self.stderr_tail[-6:]) or f"ffmpeg exited with code {returncode}"
            logger.error("[%s] FFmpeg error: %s", self.label, detail)
            raise TranscodeError(detail)
        logger.info("[%s] Conversion completed successfully (%d bytes)", self.label, self.bytes_sent)

    async def _drain_tasks(self):
        for task in (self._feeder, self._stderr_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

    def kill(self) -> bool:
        if self.process is not None and self.process.returncode is None:
            self.process.kill()
            logger.info("[%s] Transcoder killed", self.label)
            return True
        return False

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self.kill()
        for task in (self._feeder, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        if self.controller is not None:
            self.controller.unregister_job(self.id)
        aclose = getattr(self.source, 'aclose', None)
        if aclose is not None:
            try:
                await aclose()
            except RuntimeError:
                # generator still running inside the cancelled feeder
                pass


class TranscodePipeline:
    """Builds transcode jobs for resolved formats."""

    def __init__(self, source_opener: Callable = open_source, spawn: Callable = asyncio.create_subprocess_exec,
                 controller: JobController = job_controller):
        self.source_opener = source_opener
        self.spawn = spawn
        self.controller = controller

    def create_job(self, metadata: VideoMetadata, fmt: MediaFormat, bitrate: Optional[int] = None) -> TranscodeJob:
        options = TranscodeOptions(bitrate=bitrate or settings.DEFAULT_BITRATE)
        source = self.source_opener(fmt.url, resolver.headers)
        return TranscodeJob(
            source, options,
            duration=metadata.duration,
            label=metadata.id,
            spawn=self.spawn,
            controller=self.controller,
        )

transcode_pipeline = TranscodePipeline()
