import logging
from typing import Dict, Protocol

logger = logging.getLogger(__name__)

class Killable(Protocol):
    def kill(self) -> bool: ...

class JobController:
    """Registry of in-flight transcode jobs, so shutdown can stop them all."""

    def __init__(self):
        self.jobs: Dict[str, Killable] = {}

    def register_job(self, job_id: str, job: Killable):
        self.jobs[job_id] = job

    def unregister_job(self, job_id: str):
        self.jobs.pop(job_id, None)

    def cancel_job(self, job_id: str) -> bool:
        job = self.jobs.get(job_id)
        return bool(job and job.kill())

    def cancel_all(self) -> int:
        cancelled = sum(1 for job_id in list(self.jobs) if self.cancel_job(job_id))
        if cancelled:
            logger.info("Killed %d running transcode job(s)", cancelled)
        return cancelled

    def __len__(self) -> int:
        return len(self.jobs)

job_controller = JobController()
