"""Job control surface for shells: start, cancel, wait and subscribe."""

import asyncio
import logging
from typing import Callable

from speechmaker.errors import InputError
from speechmaker.files import output_filename
from speechmaker.models import ConversionJob, JobResult
from speechmaker.settings import Settings

logger = logging.getLogger(__name__)


class ConversionService:
    """Starts pipeline runs as asyncio tasks and fans events out to listeners.

    Values not given to start_job() come from settings. Must be used from
    inside a running event loop.
    """

    def __init__(self, pipeline, settings: Settings | None = None):
        self.pipeline = pipeline
        self.settings = settings or Settings()
        self._jobs: dict[str, ConversionJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._listeners: list[Callable] = []

    def subscribe(self, listener: Callable) -> Callable[[], None]:
        """Register a listener for job events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _dispatch(self, event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed on %s", type(event).__name__)

    def start_job(
        self,
        text: str,
        voice_id: str | None = None,
        speed: float | None = None,
        output_format: str | None = None,
        output_dir: str | None = None,
    ) -> ConversionJob:
        output_format = output_format or self.settings.default_output_format
        output_dir = output_dir or self.settings.output_folder()
        job = ConversionJob(
            text=text,
            voice_id=voice_id or self.settings.last_selected_voice or "",
            output_path=output_filename(output_dir, output_format),
            speed=self.settings.voice_speed if speed is None else speed,
            output_format=output_format,
        )
        self._jobs[job.id] = job
        self._tasks[job.id] = asyncio.create_task(self.pipeline.run(job, self._dispatch))
        logger.info("Started job %s (%d chars, %s, %s)", job.id, len(text), job.voice_id, output_format)
        return job

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation. False if the job is unknown or already finished."""
        job = self._jobs.get(job_id)
        if job is None or job.state.terminal:
            return False
        job.cancel()
        logger.info("Cancellation requested for job %s", job_id)
        return True

    async def wait(self, job_id: str) -> JobResult:
        task = self._tasks.get(job_id)
        if task is None:
            raise InputError(f"Unknown job: {job_id}")
        return await task

    def get_job(self, job_id: str) -> ConversionJob | None:
        return self._jobs.get(job_id)

    def active_jobs(self) -> list[ConversionJob]:
        return [job for job in self._jobs.values() if not job.state.terminal]
