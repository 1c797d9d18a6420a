"""Tests for constants and models."""

import asyncio
import dataclasses
import re

import pytest

from speechmaker import constants
from speechmaker.errors import InternalError
from speechmaker.models import (
    AudioUnit,
    ConversionJob,
    JobState,
    TextSegment,
    TranscodeOptions,
    Voice,
)


def test_text_segment_frozen():
    seg = TextSegment(index=0, content="Hello.")
    with pytest.raises(dataclasses.FrozenInstanceError):
        seg.content = "changed"


def test_audio_unit_defaults():
    unit = AudioUnit(segment_index=2, file_path="/tmp/chunk_0002.wav")
    assert unit.format == "wav"


def test_voice_defaults():
    voice = Voice(id="en-US-AriaNeural", display_name="Aria")
    assert voice.gender == "Unknown"
    assert voice.locale == "Unknown"
    assert voice.is_default is False


def test_transcode_options_defaults():
    options = TranscodeOptions()
    assert options.bitrate == constants.OUTPUT_BITRATE
    assert options.sample_rate == constants.OUTPUT_SAMPLE_RATE


def test_job_defaults():
    job = ConversionJob(text="Hi.", voice_id="en-US-AriaNeural", output_path="/tmp/speech.wav")
    assert re.fullmatch(r"job_[0-9a-f]{12}", job.id)
    assert job.state == JobState.QUEUED
    assert job.speed == 1.0
    assert job.output_format == "wav"
    assert not job.cancelled
    assert job.id != ConversionJob(text="Hi.", voice_id="v", output_path="/tmp/x.wav").id


def test_terminal_states():
    assert {s for s in JobState if s.terminal} == {JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}


def test_transition_after_terminal_raises():
    job = ConversionJob(text="Hi.", voice_id="v", output_path="/tmp/speech.wav")
    job.transition(JobState.SPLITTING)
    job.transition(JobState.COMPLETED)
    with pytest.raises(InternalError, match="already completed"):
        job.transition(JobState.FAILED)
    assert job.state == JobState.COMPLETED


def test_cancel_stops_tracked_tasks():
    job = ConversionJob(text="Hi.", voice_id="v", output_path="/tmp/speech.wav")

    async def run():
        task = asyncio.create_task(asyncio.sleep(30))
        job.track(task)
        job.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        return task

    task = asyncio.run(run())
    assert job.cancelled
    assert task.cancelled()
    assert job._tasks == set()


def test_constants_consistent():
    assert constants.MIN_CHUNK_LENGTH_LIMIT <= constants.MAX_CHUNK_LENGTH <= constants.MAX_CHUNK_LENGTH_LIMIT
    assert constants.MIN_SPEED <= constants.DEFAULT_SPEED <= constants.MAX_SPEED
    assert constants.PROGRESS_QUEUED < constants.PROGRESS_SPLIT < constants.PROGRESS_SYNTH_START
    assert constants.PROGRESS_SYNTH_END < constants.PROGRESS_MERGING < constants.PROGRESS_TRANSCODING
    assert constants.PROGRESS_DONE == 100
    assert constants.DEFAULT_OUTPUT_FORMAT in constants.OUTPUT_FORMATS
    assert constants.OUTPUT_SAMPLE_RATE in constants.SUPPORTED_SAMPLE_RATES
