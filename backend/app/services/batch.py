import asyncio
import logging
from typing import Any, Union

from backend.app.core.config import settings
from backend.app.core.errors import AudioFlowError, BatchInputError
from backend.app.models.schemas import BatchFailure, BatchResponse, BatchSuccess
from backend.app.services.cache import MetadataCache, metadata_cache
from backend.app.services.naming import unique_filename
from backend.app.services.validation import require_video_id

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Prepares filenames and metadata for a bounded list of videos at once.

    Items are resolved concurrently and independently: one failure ends up
    in ``failed`` without touching the others. No transcoding happens here.
    """

    def __init__(self, cache: MetadataCache, max_items: int = settings.BATCH_MAX_ITEMS):
        self.cache = cache
        self.max_items = max_items

    def check_input(self, video_ids: Any) -> list:
        if video_ids is None:
            raise BatchInputError("videoIds is required")
        if not isinstance(video_ids, list):
            raise BatchInputError("videoIds must be an array")
        if not video_ids:
            raise BatchInputError("videoIds must not be empty")
        if len(video_ids) > self.max_items:
            raise BatchInputError(f"Maximum {self.max_items} videos per batch")
        return video_ids

    async def _process(self, video_id: Any) -> Union[BatchSuccess, BatchFailure]:
        try:
            require_video_id(video_id)
            metadata = await self.cache.get_or_resolve(video_id)
        except AudioFlowError as e:
            logger.warning("Batch item %r failed: %s", video_id, e)
            return BatchFailure(videoId=video_id, error=e.details or e.error)
        except Exception:
            logger.exception("Batch item %r failed unexpectedly", video_id)
            return BatchFailure(videoId=video_id, error="Failed to fetch video information")
        filename = unique_filename(metadata.title)
        return BatchSuccess(
            videoId=video_id,
            title=metadata.title,
            filename=filename,
            downloadUrl=f"/downloads/{filename}",
        )

    async def run(self, video_ids: Any) -> BatchResponse:
        items = self.check_input(video_ids)
        logger.info("Batch of %d video(s) submitted", len(items))
        outcomes = await asyncio.gather(*(self._process(v) for v in items))
        return BatchResponse(
            successful=[o for o in outcomes if isinstance(o, BatchSuccess)],
            failed=[o for o in outcomes if isinstance(o, BatchFailure)],
            total=len(items),
        )

batch_orchestrator = BatchOrchestrator(metadata_cache)
