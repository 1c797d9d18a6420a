"""Conversion pipeline: split → synthesize in batches → merge → transcode.

A job runs through

    queued → splitting → synthesizing → merging → [transcoding] → completed

and can end in failed or cancelled from any non-terminal state. The whole
run is retried with exponential backoff unless the failure is the caller's
fault (InputError) or cannot improve by retrying (InternalError, missing
ffmpeg). Observers get progress events followed by exactly one terminal
event.
"""

import asyncio
import logging
import os
from typing import Callable

from speechmaker.chunker import split_text, validate_max_length
from speechmaker.constants import (
    CHUNK_TEMP_PREFIX,
    JOB_MAX_ATTEMPTS,
    MAX_CHUNK_LENGTH,
    MERGED_WAV_NAME,
    OUTPUT_FORMATS,
    PROGRESS_DONE,
    PROGRESS_MERGING,
    PROGRESS_QUEUED,
    PROGRESS_SPLIT,
    PROGRESS_SYNTH_END,
    PROGRESS_SYNTH_START,
    PROGRESS_TRANSCODING,
    SYNTHESIS_BATCH_SIZE,
)
from speechmaker.errors import FilesystemError, InputError, InternalError, SpeechMakerError
from speechmaker.files import remove_path, unique_filename
from speechmaker.models import (
    AudioUnit,
    CancelledEvent,
    CompletedEvent,
    ConversionJob,
    FailedEvent,
    JobResult,
    JobState,
    ProgressEvent,
    RetryEvent,
    TextSegment,
    TranscodeOptions,
)
from speechmaker.retry import RetryPolicy
from speechmaker.tts import validate_speed

logger = logging.getLogger(__name__)


def validate_job(job: ConversionJob) -> None:
    """Reject requests that no retry can fix."""
    if not job.text or not job.text.strip():
        raise InputError(
            "Text cannot be empty",
            user_message="No text provided for conversion.",
            troubleshooting=[
                "Enter text in the input area or select a text file",
                "Make sure the selected file contains readable text",
            ],
        )
    if not job.voice_id:
        raise InputError(
            "Voice ID is required",
            user_message="No voice selected.",
            troubleshooting=["Select a voice from the list", "Refresh the voice list"],
        )
    if not job.output_path or not os.path.dirname(job.output_path):
        raise InputError(
            "Output path is required",
            user_message="Cannot save to the selected output location.",
            troubleshooting=[
                "Select an output folder",
                "Check that the output folder exists and is writable",
            ],
        )
    if job.output_format not in OUTPUT_FORMATS:
        raise InputError(f"Output format must be one of {', '.join(OUTPUT_FORMATS)}, got {job.output_format!r}")
    if os.path.splitext(job.output_path)[1].lower() != f".{job.output_format}":
        raise InputError(f"Output path {job.output_path} does not end in .{job.output_format}")
    validate_speed(job.speed)


async def _move(source: str, target: str) -> None:
    try:
        await asyncio.to_thread(os.replace, source, target)
    except OSError as e:
        raise FilesystemError.from_os_error(e, target) from e


def _keep_fallback(merged_path: str, output_path: str) -> str | None:
    """Move the merged WAV next to output_path under a name no file uses yet."""
    out_dir = os.path.dirname(output_path)
    base = os.path.splitext(os.path.basename(output_path))[0]
    target = unique_filename(out_dir, base, ".wav")
    try:
        os.replace(merged_path, target)
    except OSError as e:
        logger.warning("Could not keep merged WAV as %s: %s", target, e)
        return None
    logger.warning("MP3 conversion failed; WAV output kept at %s", target)
    return target


def _safe_observer(observer: Callable | None) -> Callable:
    def emit(event) -> None:
        if observer is None:
            return
        try:
            observer(event)
        except Exception:
            logger.exception("Job observer failed on %s", type(event).__name__)
    return emit


class ConversionPipeline:
    """Runs conversion jobs against the synthesis and transcode gateways."""

    def __init__(
        self,
        synthesizer,
        transcoder,
        max_chunk_length: int = MAX_CHUNK_LENGTH,
        batch_size: int = SYNTHESIS_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
        transcode_options: TranscodeOptions | None = None,
    ):
        self.synthesizer = synthesizer
        self.transcoder = transcoder
        self.max_chunk_length = validate_max_length(max_chunk_length)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=JOB_MAX_ATTEMPTS)
        self.transcode_options = transcode_options

    async def run(self, job: ConversionJob, observer: Callable | None = None) -> JobResult:
        """Run a job to a terminal state and return its result. Never raises
        for pipeline errors; they come back in JobResult.error."""
        emit = _safe_observer(observer)
        try:
            validate_job(job)
        except InputError as e:
            return self._fail(job, e, emit)

        emit(ProgressEvent(job.id, PROGRESS_QUEUED, "Initializing conversion..."))

        def scheduled(attempt: int, delay: float, exc: Exception) -> None:
            emit(RetryEvent(
                job_id=job.id,
                attempt=attempt,
                max_attempts=self.retry_policy.max_attempts,
                delay=delay,
                error=getattr(exc, "user_message", str(exc)),
            ))

        try:
            output = await self.retry_policy.run(
                lambda attempt: self._attempt(job, emit, attempt),
                should_retry=lambda exc: isinstance(exc, SpeechMakerError) and exc.retryable,
                on_retry=scheduled,
                name=f"conversion {job.id}",
            )
        except SpeechMakerError as e:
            return self._fail(job, e, emit)

        if output is None:
            job.transition(JobState.CANCELLED)
            logger.info("Job %s cancelled", job.id)
            emit(CancelledEvent(job.id))
            return JobResult(job.id, JobState.CANCELLED)

        job.transition(JobState.COMPLETED)
        logger.info("Job %s completed: %s", job.id, output)
        emit(ProgressEvent(job.id, PROGRESS_DONE, "Conversion complete"))
        emit(CompletedEvent(job.id, output))
        return JobResult(job.id, JobState.COMPLETED, output_file=output)

    def _fail(self, job: ConversionJob, error: SpeechMakerError, emit: Callable) -> JobResult:
        if isinstance(error, InternalError):
            logger.error("Internal error in job %s: %s", job.id, error.to_dict(), exc_info=error)
        else:
            logger.error("Job %s failed (%s): %s", job.id, error.kind, error)
        job.transition(JobState.FAILED)
        emit(FailedEvent(
            job_id=job.id,
            error=error.message,
            user_message=error.user_message,
            kind=error.kind,
            troubleshooting=tuple(error.troubleshooting),
            fallback_output=error.details.get("fallback_output"),
        ))
        return JobResult(job.id, JobState.FAILED, error=error)

    async def _attempt(self, job: ConversionJob, emit: Callable, attempt: int) -> str | None:
        """One full pass over the pipeline. Returns the output path, or None
        when the job was cancelled.

        All intermediates live in the job's chunk directory; nothing next to
        the output is written until the final file is ready.
        """
        if job.cancelled:
            return None

        out_dir = os.path.dirname(job.output_path)
        chunk_dir = os.path.join(out_dir, f"{CHUNK_TEMP_PREFIX}{job.id}")
        merged_path = os.path.join(chunk_dir, MERGED_WAV_NAME)
        try:
            job.transition(JobState.SPLITTING)
            segments = split_text(job.text, self.max_chunk_length)
            if not segments:
                raise InternalError(
                    "Chunker returned no segments for non-empty text",
                    details={"job_id": job.id, "text_length": len(job.text)},
                )
            emit(ProgressEvent(job.id, PROGRESS_SPLIT, f"Split text into {len(segments)} segment(s)"))
            if job.cancelled:
                return None

            job.transition(JobState.SYNTHESIZING)
            emit(ProgressEvent(job.id, PROGRESS_SYNTH_START, "Generating speech..."))
            units = await self._synthesize_all(job, segments, chunk_dir, emit)
            if units is None or job.cancelled:
                return None

            job.transition(JobState.MERGING)
            emit(ProgressEvent(job.id, PROGRESS_MERGING, "Merging audio chunks..."))
            await self.transcoder.merge_units(units, merged_path)
            if job.cancelled:
                return None

            if job.output_format == "wav":
                await _move(merged_path, job.output_path)
                return job.output_path

            job.transition(JobState.TRANSCODING)
            emit(ProgressEvent(job.id, PROGRESS_TRANSCODING, "Converting to MP3..."))
            try:
                await self.transcoder.transcode(merged_path, job.output_path, self.transcode_options)
            except SpeechMakerError as e:
                final = not e.retryable or attempt >= self.retry_policy.max_attempts
                if final and os.path.exists(merged_path):
                    fallback = await asyncio.to_thread(_keep_fallback, merged_path, job.output_path)
                    if fallback:
                        e.details["fallback_output"] = fallback
                raise
            return job.output_path
        except SpeechMakerError:
            raise
        except Exception as e:
            logger.exception("Unexpected failure in job %s", job.id)
            raise InternalError(
                f"Unexpected {type(e).__name__}: {e}",
                details={"job_id": job.id, "state": job.state.value},
            ) from e
        finally:
            await asyncio.to_thread(remove_path, chunk_dir)

    async def _synthesize_all(
        self,
        job: ConversionJob,
        segments: list[TextSegment],
        chunk_dir: str,
        emit: Callable,
    ) -> list[AudioUnit] | None:
        """Synthesize segments in concurrent batches.

        Each task writes only its own slot. Returns None if the job was
        cancelled at a batch boundary or while a batch was in flight.
        """
        total = len(segments)
        slots: list[AudioUnit | None] = [None] * total
        done = 0

        async def synthesize_one(position: int, segment: TextSegment) -> None:
            nonlocal done
            path = os.path.join(chunk_dir, f"chunk_{segment.index:04d}.wav")
            await self.synthesizer.synthesize(segment, job.voice_id, job.speed, path)
            slots[position] = AudioUnit(segment_index=segment.index, file_path=path)
            done += 1
            progress = PROGRESS_SYNTH_START + round(
                (PROGRESS_SYNTH_END - PROGRESS_SYNTH_START) * done / total
            )
            emit(ProgressEvent(job.id, progress, f"Converting chunk {done} of {total}"))

        for start in range(0, total, self.batch_size):
            if job.cancelled:
                return None
            tasks = []
            for position in range(start, min(start + self.batch_size, total)):
                task = asyncio.create_task(synthesize_one(position, segments[position]))
                job.track(task)
                tasks.append(task)

            results = await asyncio.gather(*tasks, return_exceptions=True)
            if job.cancelled:
                return None
            for result in results:
                if isinstance(result, asyncio.CancelledError):
                    raise InternalError(
                        "Synthesis task cancelled without job cancellation",
                        details={"job_id": job.id},
                    )
                if isinstance(result, BaseException):
                    raise result

        return [unit for unit in slots if unit is not None]
