import asyncio

import pytest

from backend.app.core.errors import BatchInputError, ResolutionError
from backend.app.services.batch import BatchOrchestrator
from backend.app.services.cache import MetadataCache
from fakes import FakeResolver, make_metadata


def _orchestrator(resolver) -> BatchOrchestrator:
    return BatchOrchestrator(MetadataCache(resolver))


@pytest.mark.parametrize("video_ids", [None, [], "dQw4w9WgXcQ", {"id": "dQw4w9WgXcQ"}, ["dQw4w9WgXcQ"] * 11])
def test_bad_input_fails_before_any_resolution(video_ids, fake_resolver) -> None:
    with pytest.raises(BatchInputError) as info:
        asyncio.run(_orchestrator(fake_resolver).run(video_ids))
    assert info.value.status_code == 400
    assert fake_resolver.calls == []


def test_partial_failure_is_reported_per_item(fake_resolver, metadata) -> None:
    result = asyncio.run(_orchestrator(fake_resolver).run([metadata.id, "not-an-id"]))

    assert result.status == "batch_queued"
    assert result.total == 2
    assert len(result.successful) == 1
    assert len(result.failed) == 1

    success = result.successful[0]
    assert success.videoId == metadata.id
    assert success.title == metadata.title
    assert success.status == "queued"
    assert success.filename.startswith("never_gonna_give_you_up_")
    assert success.downloadUrl == f"/downloads/{success.filename}"

    assert result.failed[0].videoId == "not-an-id"
    assert result.failed[0].error == "Invalid YouTube video ID format"
    assert fake_resolver.calls == [metadata.id]


def test_resolution_failures_do_not_abort_siblings() -> None:
    ok = make_metadata(video_id="aaaaaaaaaaa", title="Fine")
    resolver = FakeResolver({"aaaaaaaaaaa": ok})

    result = asyncio.run(_orchestrator(resolver).run(["aaaaaaaaaaa", "missing0000", 42]))

    assert [s.videoId for s in result.successful] == ["aaaaaaaaaaa"]
    assert [f.videoId for f in result.failed] == ["missing0000", 42]
    assert "Video unavailable" in result.failed[0].error
    assert result.total == 3


def test_items_run_concurrently() -> None:
    ids = [f"video{i:06d}" for i in range(10)]
    in_flight = []
    peak = []

    class SlowResolver(FakeResolver):
        async def resolve(self, video_id, policy=None):
            in_flight.append(video_id)
            peak.append(len(in_flight))
            await asyncio.sleep(0.01)
            in_flight.remove(video_id)
            return make_metadata(video_id=video_id)

    result = asyncio.run(_orchestrator(SlowResolver()).run(ids))

    assert len(result.successful) == 10
    assert max(peak) == 10


def test_network_failure_reason_is_kept() -> None:
    resolver = FakeResolver(failure=ResolutionError(ResolutionError.NETWORK, "connection reset"))
    result = asyncio.run(_orchestrator(resolver).run(["aaaaaaaaaaa"]))
    assert result.failed[0].error == "connection reset"


def test_unexpected_resolver_error_stays_with_its_item() -> None:
    ok = make_metadata(video_id="aaaaaaaaaaa", title="Fine")

    class BrokenResolver(FakeResolver):
        async def resolve(self, video_id, policy=None):
            if video_id == "bbbbbbbbbbb":
                raise KeyError("formats")
            return await super().resolve(video_id, policy)

    result = asyncio.run(_orchestrator(BrokenResolver({"aaaaaaaaaaa": ok})).run(["aaaaaaaaaaa", "bbbbbbbbbbb"]))

    assert [s.videoId for s in result.successful] == ["aaaaaaaaaaa"]
    assert [(f.videoId, f.error) for f in result.failed] == [("bbbbbbbbbbb", "Failed to fetch video information")]
    assert result.total == 2
