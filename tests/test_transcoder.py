import asyncio

import pytest

from backend.app.core.errors import TranscodeError
from backend.app.services.jobs import JobController
from backend.app.services.transcoder import (
    TranscodeJob, TranscodeOptions, TranscodePipeline, build_ffmpeg_args, parse_progress,
)
from fakes import FakeSpawner, chunks_source


def test_ffmpeg_args_request_fast_stereo_mp3() -> None:
    args = build_ffmpeg_args(TranscodeOptions(bitrate=192), ffmpeg_path="/usr/bin/ffmpeg")

    assert args[0] == "/usr/bin/ffmpeg"
    assert args[args.index("-i") + 1] == "pipe:0"
    assert args[args.index("-b:a") + 1] == "192k"
    assert args[args.index("-ac") + 1] == "2"
    assert args[args.index("-ar") + 1] == "44100"
    assert args[args.index("-preset") + 1] == "ultrafast"
    assert args[args.index("-threads") + 1] == "0"
    assert args[-3:] == ["-f", "mp3", "pipe:1"]


def test_parse_progress() -> None:
    line = "size=     512kB time=00:01:46.50 bitrate= 128.0kbits/s speed=42x"
    assert parse_progress(line, 213) == pytest.approx(50.0)
    assert parse_progress(line, None) is None
    assert parse_progress("Press [q] to stop", 213) is None


def test_relay_forwards_bytes_in_order() -> None:
    spawner = FakeSpawner()
    controller = JobController()

    async def scenario():
        job = TranscodeJob(chunks_source([b"one", b"two", b"three"]), spawn=spawner, controller=controller)
        await job.prime()
        assert len(controller) == 1
        received = [chunk async for chunk in job.relay()]
        return job, received

    job, received = asyncio.run(scenario())

    assert b"".join(received) == b"onetwothree"
    assert job.bytes_sent == len(b"onetwothree")
    assert spawner.processes[0].killed is False
    assert spawner.processes[0].stdin.closed is True
    assert len(controller) == 0


def test_client_disconnect_kills_transcoder_without_further_writes() -> None:
    spawner = FakeSpawner()

    async def scenario():
        job = TranscodeJob(chunks_source([b"a", b"b"], hold=True), spawn=spawner, chunk_size=1)
        stream = job.relay()
        first = await stream.__anext__()
        process = spawner.processes[0]
        assert process.returncode is None

        # what the server does when the client goes away
        await stream.aclose()
        await asyncio.sleep(0)
        assert process.killed is True
        assert job._feeder.done()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        return first, job

    first, job = asyncio.run(scenario())
    assert first == b"a"
    assert job.bytes_sent == 1


def test_cancelled_relay_task_kills_transcoder() -> None:
    spawner = FakeSpawner()
    sent = []

    async def scenario():
        job = TranscodeJob(chunks_source([b"x"], hold=True), spawn=spawner)
        await job.prime()

        async def consume():
            async for chunk in job.relay():
                sent.append(chunk)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert sent == [b"x"]
    assert spawner.processes[0].killed is True


def test_failure_before_first_byte_raises() -> None:
    spawner = FakeSpawner(exit_code=1, echo=False, stderr_text="pipe:0: Invalid data found when processing input\n")

    async def scenario():
        job = TranscodeJob(chunks_source([b"garbage"]), spawn=spawner)
        await job.prime()

    with pytest.raises(TranscodeError) as info:
        asyncio.run(scenario())
    assert "Invalid data found" in info.value.details
    assert info.value.status_code == 500


def test_source_failure_kills_process_and_surfaces() -> None:
    spawner = FakeSpawner()

    async def broken_source():
        yield b"partial"
        raise TranscodeError("Upstream responded with HTTP 403")

    async def scenario():
        job = TranscodeJob(broken_source(), spawn=spawner)
        return [chunk async for chunk in job.relay()]

    with pytest.raises(TranscodeError) as info:
        asyncio.run(scenario())
    assert "HTTP 403" in info.value.details
    assert spawner.processes[0].killed is True


def test_missing_ffmpeg_binary() -> None:
    async def spawn(*args, **kwargs):
        raise FileNotFoundError("ffmpeg")

    async def scenario():
        job = TranscodeJob(chunks_source([b"x"]), spawn=spawn)
        await job.prime()

    with pytest.raises(TranscodeError) as info:
        asyncio.run(scenario())
    assert "not installed" in info.value.details


def test_save_writes_file(tmp_path) -> None:
    spawner = FakeSpawner()
    target = tmp_path / "out.mp3"

    async def scenario():
        job = TranscodeJob(chunks_source([b"ID3", b"frames"]), spawn=spawner)
        return await job.save(str(target))

    assert asyncio.run(scenario()) == len(b"ID3frames")
    assert target.read_bytes() == b"ID3frames"


def test_pipeline_builds_job_from_format(metadata) -> None:
    opened = []

    def opener(url, headers):
        opened.append(url)
        return chunks_source([b""])

    pipeline = TranscodePipeline(source_opener=opener, spawn=FakeSpawner(), controller=JobController())
    fmt = metadata.formats[1]
    job = pipeline.create_job(metadata, fmt, bitrate=None)

    assert opened == [fmt.url]
    assert job.options.bitrate == 128
    assert job.duration == metadata.duration
    assert pipeline.create_job(metadata, fmt, bitrate=256).options.bitrate == 256


def test_hangup_before_first_byte_kills_transcoder() -> None:
    spawner = FakeSpawner()
    polls = []

    async def is_disconnected():
        polls.append(1)
        return len(polls) >= 2

    async def scenario():
        job = TranscodeJob(chunks_source([], hold=True), spawn=spawner)
        primed = await asyncio.wait_for(job.prime_while_connected(is_disconnected, poll_interval=0.01), timeout=2)
        await asyncio.sleep(0)
        return job, primed

    job, primed = asyncio.run(scenario())

    assert primed is False
    assert spawner.processes[0].killed is True
    assert job._feeder.done()


def test_prime_while_connected_returns_once_audio_flows() -> None:
    spawner = FakeSpawner()

    async def is_disconnected():
        return False

    async def scenario():
        job = TranscodeJob(chunks_source([b"ID3", b"rest"]), spawn=spawner)
        primed = await job.prime_while_connected(is_disconnected, poll_interval=0.01)
        received = [chunk async for chunk in job.relay()]
        return primed, received

    primed, received = asyncio.run(scenario())

    assert primed is True
    assert b"".join(received) == b"ID3rest"
    assert spawner.processes[0].killed is False


def test_prime_while_connected_surfaces_transcoder_failure() -> None:
    spawner = FakeSpawner(exit_code=1, echo=False, stderr_text="Invalid data found when processing input")

    async def is_disconnected():
        return False

    async def scenario():
        job = TranscodeJob(chunks_source([b"garbage"]), spawn=spawner)
        await job.prime_while_connected(is_disconnected, poll_interval=0.01)

    with pytest.raises(TranscodeError) as info:
        asyncio.run(scenario())
    assert "Invalid data found" in info.value.details
