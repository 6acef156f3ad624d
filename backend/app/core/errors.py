"""
Error taxonomy for the audio pipeline.

Every exception carries the HTTP status it maps to and a public ``error``
message; ``details`` is optional free text. The handlers registered by
``install_error_handlers`` render them as ``{"error": ..., "details": ...}``.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

AVAILABLE_ENDPOINTS = {
    'GET /direct-link/{videoId}': 'Resolve a direct, time-limited audio URL',
    'GET /download-mp3/{videoId}': 'Stream an MP3 transcode',
    'POST /download-mp3': 'Transcode to a file, body { videoId: "..." }',
    'POST /batch-download': 'Prepare up to 10 downloads, body { videoIds: [...] }',
    'GET /video-info/{videoId}': 'Get video information',
    'GET /formats/{videoId}': 'List available formats',
    'GET /status/{filename}': 'Check download status',
    'GET /health': 'Health check',
    'GET /cache-stats': 'Metadata cache statistics',
    'POST /clear-cache': 'Empty the metadata cache',
}


class AudioFlowError(Exception):
    status_code = 500
    error = "Internal server error"

    def __init__(self, details: Optional[str] = None):
        super().__init__(details or self.error)
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details:
            body["details"] = self.details
        return body


class InvalidIdentifier(AudioFlowError):
    status_code = 400
    error = "Invalid YouTube video ID format"


class ResolutionError(AudioFlowError):
    NOT_FOUND = "not_found"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"

    def __init__(self, reason: str, details: Optional[str] = None):
        self.reason = reason
        super().__init__(details)

    @property
    def status_code(self) -> int:
        return 404 if self.reason == self.NOT_FOUND else 500

    @property
    def error(self) -> str:
        if self.reason == self.NOT_FOUND:
            return "Video not found or unavailable"
        if self.reason == self.RATE_LIMITED:
            return "Upstream rate limit reached"
        if self.reason == self.MALFORMED:
            return "Malformed upstream response"
        return "Failed to fetch video information"


class NoFormatsAvailable(AudioFlowError):
    status_code = 400
    error = "No audio formats available for this video"


class TranscodeError(AudioFlowError):
    error = "Conversion error"


class BatchInputError(AudioFlowError):
    status_code = 400
    error = "Invalid batch request"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AudioFlowError)
    async def audioflow_error_handler(request: Request, exc: AudioFlowError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse(
                status_code=404,
                content={"error": "Endpoint not found", "availableEndpoints": AVAILABLE_ENDPOINTS},
            )
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "details": "Something went wrong on the server"},
        )
