import asyncio
import logging
import os
import time
from typing import List, Optional

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class FilesystemJanitor:
    """Best-effort removal of stale files from the output directory."""

    def __init__(
        self,
        directory: str = settings.DOWNLOAD_PATH,
        retention: float = settings.FILE_RETENTION_SECONDS,
        interval: float = settings.CLEANUP_INTERVAL_SECONDS,
    ):
        self.directory = directory
        self.retention = retention
        self.interval = interval

    def sweep(self, now: Optional[float] = None) -> List[str]:
        now = time.time() if now is None else now
        removed = []
        try:
            entries = list(os.scandir(self.directory))
        except OSError as e:
            logger.warning("Cannot scan %s: %s", self.directory, e)
            return removed

        for entry in entries:
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                if now - entry.stat(follow_symlinks=False).st_mtime > self.retention:
                    os.unlink(entry.path)
                    removed.append(entry.path)
            except OSError as e:
                # file vanished or is still being written
                logger.warning("Skipping %s during cleanup: %s", entry.path, e)

        if removed:
            logger.info("Removed %d stale file(s) from %s", len(removed), self.directory)
        return removed

    async def run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Cleanup sweep failed")

    def start(self) -> asyncio.Task:
        return asyncio.create_task(self.run(), name="filesystem-janitor")

janitor = FilesystemJanitor()
