"""Shared fixtures for speechmaker tests."""

import asyncio
import os

import pytest
import soundfile as sf
from pydub import AudioSegment
from pydub.generators import Sine

from speechmaker.errors import ExternalProcessError
from speechmaker.models import CapabilityStatus
from speechmaker.retry import RetryPolicy
from speechmaker.voices import VoiceRegistry

VOICE_RECORDS = [
    {"ShortName": "de-DE-KatjaNeural", "FriendlyName": "Microsoft Katja Online", "Gender": "Female", "Locale": "de-DE"},
    {"ShortName": "en-US-AriaNeural", "FriendlyName": "Microsoft Aria Online", "Gender": "Female", "Locale": "en-US"},
    {"ShortName": "en-GB-RyanNeural", "FriendlyName": "Microsoft Ryan Online", "Gender": "Male", "Locale": "en-GB"},
]


def write_wav(path, duration=20, freq=None):
    """Write a short WAV file; silent unless freq is given. No ffmpeg needed."""
    if freq:
        audio = Sine(freq).to_audio_segment(duration=duration)
    else:
        audio = AudioSegment.silent(duration=duration)
    audio.export(str(path), format="wav")
    return str(path)


MP3_WRITABLE = "MP3" in sf.available_formats()


def write_mp3(path, duration=100, sample_rate=24000):
    """Write silent MPEG audio the way edge-tts delivers it. No ffmpeg needed."""
    sf.write(str(path), [0.0] * (sample_rate * duration // 1000), sample_rate, format="MP3")
    return str(path)


class StubEngine:
    """Synthesis engine that writes short silent WAV files.

    `fail_times` makes the first N synthesize calls raise `error`. `delay`
    keeps each call in flight for that many seconds.
    """

    name = "stub-tts"

    def __init__(self, voices=None, fail_times=0, error=None, delay=0.0):
        self.voices = VOICE_RECORDS if voices is None else voices
        self.fail_times = fail_times
        self.error = error
        self.delay = delay
        self.calls = []
        self.list_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = asyncio.Event()

    async def list_voices(self):
        self.list_calls += 1
        return list(self.voices)

    async def synthesize(self, text, voice_id, rate, output_path):
        self.calls.append((text, voice_id, rate, output_path))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise self.error or ExternalProcessError(self.name, "engine hiccup")
            write_wav(output_path)
        finally:
            self.in_flight -= 1


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class StaticDetector:
    """Capability detector with a fixed status."""

    def __init__(self, status):
        self._status = status
        self.calls = 0

    @property
    def status(self):
        return self._status

    async def ensure_available(self):
        self.calls += 1
        return self._status


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def stub_engine():
    return StubEngine()


@pytest.fixture
def registry(stub_engine, fake_sleep):
    return VoiceRegistry(stub_engine, RetryPolicy(sleep=fake_sleep))


@pytest.fixture
def absent_detector():
    return StaticDetector(CapabilityStatus(available=False, source="none", error="No working FFmpeg installation found"))


@pytest.fixture
def available_detector():
    return StaticDetector(CapabilityStatus(
        available=True, source="system", path="/usr/bin/ffmpeg", version="6.1", validated=True,
    ))


@pytest.fixture
def wav_files(tmp_path):
    """Factory for N short WAV files with distinct tones."""
    def make(count, duration=20, prefix="unit"):
        unit_dir = tmp_path / "units"
        unit_dir.mkdir(exist_ok=True)
        return [
            write_wav(unit_dir / f"{prefix}_{i:03d}.wav", duration=duration, freq=220 + 20 * i)
            for i in range(count)
        ]
    return make


def temp_dirs(directory):
    """Leftover pipeline temp directories under directory."""
    return [
        name for name in os.listdir(directory)
        if name.startswith(("temp_chunks_", "merge_temp_"))
    ]
