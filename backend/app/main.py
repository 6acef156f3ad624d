from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from backend.app.api.endpoints import router as api_router
from backend.app.core.config import settings
from backend.app.core.errors import install_error_handlers
from backend.app.core.logging import configure_logging
from backend.app.services.janitor import janitor
from backend.app.services.jobs import job_controller
import asyncio
import logging

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Downloads directory: %s", settings.DOWNLOAD_PATH)
    cleanup = janitor.start()
    try:
        yield
    finally:
        cleanup.cancel()
        try:
            await cleanup
        except asyncio.CancelledError:
            pass
        job_controller.cancel_all()

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)
app.include_router(api_router)

# Finished file downloads
app.mount("/downloads", StaticFiles(directory=settings.DOWNLOAD_PATH), name="downloads")
