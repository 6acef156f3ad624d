from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from backend.app.core.config import settings
from backend.app.models.schemas import BatchRequest, BatchResponse, DownloadRequest
from backend.app.services.batch import batch_orchestrator
from backend.app.services.cache import metadata_cache
from backend.app.services.formats import (
    HIGHEST, choose_audio_format, describe_format, list_audio_formats, list_video_formats, select_best_audio,
)
from backend.app.services.jobs import job_controller
from backend.app.services.naming import sanitize_filename, unique_filename
from backend.app.services.resolver import STREAM_RETRY
from backend.app.services.transcoder import transcode_pipeline
from backend.app.services.validation import require_video_id
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import os

logger = logging.getLogger(__name__)

router = APIRouter()

DESCRIPTION_PREVIEW = 200


def _stream_headers(filename: str) -> dict:
    return {
        "Content-Disposition": f'attachment; filename="{filename}.mp3"',
        "Access-Control-Allow-Origin": "*",
        "Cache-Control": "no-store",
    }


@router.get("/direct-link/{video_id}")
async def direct_link(video_id: str, quality: str = Query(HIGHEST)):
    require_video_id(video_id)
    metadata = await metadata_cache.get_or_resolve(video_id)
    fmt = choose_audio_format(metadata, quality)
    expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.DIRECT_LINK_TTL_HOURS)
    return {
        "status": "success",
        "videoId": video_id,
        "title": metadata.title,
        "author": metadata.author,
        "duration": metadata.duration,
        "directUrl": fmt.url,
        "format": {
            "container": fmt.container,
            "codecs": fmt.codecs,
            "bitrate": fmt.bitrate,
            "sampleRate": fmt.sample_rate,
        },
        "expiresAt": expires_at.isoformat(),
        "note": f"Direct URL expires after about {settings.DIRECT_LINK_TTL_HOURS} hours; request a new one afterwards.",
    }


@router.get("/download-mp3/{video_id}")
async def stream_mp3(
    request: Request,
    video_id: str,
    quality: str = Query(HIGHEST),
    bitrate: Optional[int] = Query(None, ge=32, le=320),
):
    require_video_id(video_id)
    logger.info("Attempting to download: %s", video_id)
    metadata = await metadata_cache.get_or_resolve(video_id, STREAM_RETRY)
    audio_formats = list_audio_formats(metadata)
    fmt = choose_audio_format(metadata, quality)
    logger.info("Video found: %s (%d audio formats)", metadata.title, len(audio_formats))

    job = transcode_pipeline.create_job(metadata, fmt, bitrate)
    if not await job.prime_while_connected(request.is_disconnected):
        # nobody left to answer
        return Response(status_code=499)
    return StreamingResponse(
        job.relay(),
        media_type="audio/mpeg",
        headers=_stream_headers(sanitize_filename(metadata.title)),
        background=BackgroundTask(job.close),
    )


@router.post("/download-mp3")
async def download_mp3_file(request: DownloadRequest):
    if not request.videoId:
        return JSONResponse(
            status_code=400,
            content={"error": "Video ID is required", "example": {"videoId": "dQw4w9WgXcQ"}},
        )
    video_id = require_video_id(request.videoId)
    metadata = await metadata_cache.get_or_resolve(video_id)
    fmt = choose_audio_format(metadata, request.quality)

    filename = unique_filename(metadata.title)
    output_path = os.path.join(settings.DOWNLOAD_PATH, filename)
    job = transcode_pipeline.create_job(metadata, fmt, request.bitrate)
    try:
        await job.save(output_path)
    except BaseException:
        if os.path.exists(output_path):
            os.unlink(output_path)
        raise
    logger.info("Conversion complete: %s", filename)
    return {
        "status": "completed",
        "videoTitle": metadata.title,
        "filename": filename,
        "downloadUrl": f"/downloads/{filename}",
    }


@router.post("/batch-download", response_model=BatchResponse)
async def batch_download(request: BatchRequest):
    return await batch_orchestrator.run(request.videoIds)


@router.get("/video-info/{video_id}")
async def video_info(video_id: str):
    require_video_id(video_id)
    metadata, cached = await metadata_cache.lookup_or_resolve(video_id)
    description = metadata.description
    if description is not None:
        description = description[:DESCRIPTION_PREVIEW] + '...'
    return {
        "videoId": video_id,
        "title": metadata.title,
        "author": metadata.author,
        "duration": metadata.duration,
        "viewCount": metadata.view_count,
        "description": description,
        "thumbnails": [t.model_dump() for t in metadata.thumbnails],
        "uploadDate": metadata.upload_date,
        "category": metadata.category,
        "cached": cached,
    }


@router.get("/formats/{video_id}")
async def formats(video_id: str):
    require_video_id(video_id)
    metadata = await metadata_cache.get_or_resolve(video_id)
    audio = list_audio_formats(metadata)
    return {
        "videoId": video_id,
        "videoTitle": metadata.title,
        "availableAudioFormats": [describe_format(f) for f in audio],
        "videoFormats": [describe_format(f) for f in list_video_formats(metadata)],
        "recommended": describe_format(select_best_audio(metadata)) if audio else None,
    }


@router.get("/status/{filename}")
async def download_status(filename: str):
    file_path = os.path.join(settings.DOWNLOAD_PATH, os.path.basename(filename))
    if os.path.isfile(file_path):
        stats = os.stat(file_path)
        return {
            "status": "completed",
            "filename": filename,
            "size": stats.st_size,
            "downloadUrl": f"/downloads/{filename}",
            "createdAt": datetime.fromtimestamp(stats.st_mtime, timezone.utc).isoformat(),
        }
    return {"status": "processing or not found", "filename": filename}


@router.get("/health")
async def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.PROJECT_NAME,
        "activeTranscodes": len(job_controller),
    }


@router.get("/cache-stats")
async def cache_stats():
    return metadata_cache.stats()


@router.post("/clear-cache")
async def clear_cache():
    removed = metadata_cache.clear()
    return {"status": "cleared", "removed": removed}
