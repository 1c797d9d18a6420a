"""Data models for the conversion pipeline."""

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass, field

from speechmaker.constants import DEFAULT_SPEED, OUTPUT_BITRATE, OUTPUT_SAMPLE_RATE, UNIT_FORMAT
from speechmaker.errors import InternalError, SpeechMakerError


@dataclass(frozen=True)
class TextSegment:
    index: int
    content: str


@dataclass
class AudioUnit:
    segment_index: int
    file_path: str
    format: str = UNIT_FORMAT


@dataclass(frozen=True)
class Voice:
    id: str            # engine short name, e.g. "en-US-AriaNeural"
    display_name: str
    gender: str = "Unknown"
    locale: str = "Unknown"
    is_default: bool = False


@dataclass
class VoiceLoadState:
    is_loading: bool = False
    current_attempt: int = 0
    max_attempts: int = 0
    last_error: Exception | None = None


@dataclass
class VoiceLoadResult:
    success: bool
    attempt: int
    voices: list[Voice] = field(default_factory=list)
    error: Exception | None = None
    troubleshooting: list[str] = field(default_factory=list)


@dataclass
class CapabilityStatus:
    available: bool = False
    source: str = "none"          # "bundled", "system" or "none"
    path: str | None = None
    version: str | None = None
    validated: bool = False
    error: str | None = None


@dataclass(frozen=True)
class TranscodeOptions:
    bitrate: str = OUTPUT_BITRATE
    sample_rate: int = OUTPUT_SAMPLE_RATE


class JobState(enum.Enum):
    QUEUED = "queued"
    SPLITTING = "splitting"
    SYNTHESIZING = "synthesizing"
    MERGING = "merging"
    TRANSCODING = "transcoding"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


@dataclass
class ConversionJob:
    """One text-to-audio conversion request.

    `output_path` is the final artifact path including its extension. Only
    `cancel()` and the pipeline's state transitions mutate a job.
    """

    text: str
    voice_id: str
    output_path: str
    speed: float = DEFAULT_SPEED
    output_format: str = "wav"
    id: str = field(default_factory=_new_job_id)
    cancelled: bool = False
    started_at: float = field(default_factory=time.time)
    state: JobState = JobState.QUEUED
    _tasks: set = field(default_factory=set, repr=False, compare=False)

    def cancel(self) -> None:
        """Flag the job as cancelled and stop any in-flight synthesis calls."""
        self.cancelled = True
        for task in list(self._tasks):
            task.cancel()

    def track(self, task: asyncio.Task) -> None:
        """Register an in-flight task so cancel() can stop it."""
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def transition(self, state: JobState) -> None:
        if self.state.terminal:
            raise InternalError(
                f"Job {self.id} is already {self.state.value}; cannot move to {state.value}",
                details={"job_id": self.id},
            )
        self.state = state


@dataclass
class JobResult:
    job_id: str
    state: JobState
    output_file: str | None = None
    error: SpeechMakerError | None = None


# --- Events ---

@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    progress: int
    phase: str


@dataclass(frozen=True)
class RetryEvent:
    job_id: str
    attempt: int
    max_attempts: int
    delay: float
    error: str


@dataclass(frozen=True)
class CompletedEvent:
    job_id: str
    output_file: str


@dataclass(frozen=True)
class FailedEvent:
    job_id: str
    error: str
    user_message: str
    kind: str
    troubleshooting: tuple = ()
    fallback_output: str | None = None


@dataclass(frozen=True)
class CancelledEvent:
    job_id: str


@dataclass(frozen=True)
class VoiceLoadEvent:
    phase: str         # "started", "attempt", "retry_scheduled", "success", "failed"
    attempt: int = 0
    max_attempts: int = 0
    delay: float | None = None
    error: str | None = None
    voice_count: int = 0
