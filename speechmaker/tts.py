"""Speech synthesis: the edge-tts engine adapter and the per-segment gateway."""

import asyncio
import logging
import os
from typing import Protocol

import aiohttp
import edge_tts
from edge_tts.exceptions import NoAudioReceived, UnexpectedResponse, UnknownResponse, WebSocketError
import soundfile as sf

from speechmaker.constants import MIN_SPEED, MAX_SPEED
from speechmaker.errors import (
    CapabilityUnavailableError,
    ExternalProcessError,
    FilesystemError,
    InputError,
    SpeechMakerError,
    classify_error,
)
from speechmaker.models import TextSegment

logger = logging.getLogger(__name__)

_ENGINE_ERRORS = (NoAudioReceived, UnexpectedResponse, UnknownResponse, WebSocketError)


class SynthesisEngine(Protocol):
    name: str

    async def list_voices(self) -> list[dict]: ...

    async def synthesize(self, text: str, voice_id: str, rate: str, output_path: str) -> None: ...


def rate_for_speed(speed: float) -> str:
    """Translate a speed multiplier into an edge-tts rate string.

    1.0 → "+0%", 1.25 → "+25%", 0.5 → "-50%".
    """
    percent = round((speed - 1.0) * 100)
    return f"{percent:+d}%"


def _decode_to_wav(media_path: str, output_path: str) -> None:
    """Decode the engine's MPEG stream into a 16-bit PCM WAV unit.

    libsndfile decodes MPEG itself, so WAV output never needs ffmpeg.
    """
    try:
        data, sample_rate = sf.read(media_path, dtype="int16")
    except sf.LibsndfileError as e:
        raise ExternalProcessError("edge-tts", f"Synthesized audio could not be decoded: {e}") from e
    sf.write(output_path, data, sample_rate, subtype="PCM_16", format="WAV")


class EdgeTTSEngine:
    """Microsoft Edge neural voices through the edge-tts library."""

    name = "edge-tts"

    async def list_voices(self) -> list[dict]:
        try:
            return await edge_tts.list_voices()
        except aiohttp.ClientError as e:
            raise CapabilityUnavailableError(
                self.name, f"Failed to get voices: {e}", retryable=True,
            ) from e

    async def synthesize(self, text: str, voice_id: str, rate: str, output_path: str) -> None:
        """Stream speech for text into a WAV file at output_path.

        edge-tts always emits MPEG audio, so it is saved to a sidecar file and
        decoded to WAV; the sidecar is removed either way.
        """
        media_path = os.path.splitext(output_path)[0] + ".mp3"
        communicate = edge_tts.Communicate(text, voice_id, rate=rate)
        try:
            try:
                await communicate.save(media_path)
            except _ENGINE_ERRORS as e:
                raise ExternalProcessError(self.name, f"TTS conversion failed: {e}") from e
            except aiohttp.ClientError as e:
                raise CapabilityUnavailableError(
                    self.name, f"TTS service unreachable: {e}", retryable=True,
                ) from e

            # 0-byte file counts as failure
            if not os.path.exists(media_path) or os.path.getsize(media_path) == 0:
                raise ExternalProcessError(
                    self.name, f"TTS produced 0-byte file for: {text[:50]}..."
                )
            await asyncio.to_thread(_decode_to_wav, media_path, output_path)
        finally:
            if os.path.exists(media_path):
                os.remove(media_path)


class SynthesisGateway:
    """Validates one synthesis request and hands it to the engine."""

    def __init__(self, registry, engine: SynthesisEngine):
        self.registry = registry
        self.engine = engine

    async def synthesize(
        self,
        segment: TextSegment,
        voice_id: str,
        speed: float,
        output_path: str,
    ) -> str:
        """Synthesize one segment to output_path and return the path.

        Raises InputError for bad requests, CapabilityUnavailableError when the
        engine cannot be reached, ExternalProcessError when it fails, and
        FilesystemError for OS-level write failures.
        """
        if not segment.content or not segment.content.strip():
            raise InputError("Text cannot be empty")
        validate_speed(speed)
        if not voice_id:
            raise InputError("Voice ID is required")

        await self.registry.get_available_voices()
        if self.registry.find(voice_id) is None:
            raise InputError(
                f"Voice '{voice_id}' not found",
                user_message=f'The selected voice "{voice_id}" is no longer available.',
                troubleshooting=[
                    "Select a different voice from the list",
                    "Refresh the voice list",
                    "Reset the voice setting to the default voice",
                ],
                details={"voice_id": voice_id},
            )

        parent = os.path.dirname(output_path)
        if parent:
            try:
                os.makedirs(parent, exist_ok=True)
            except OSError as e:
                raise FilesystemError.from_os_error(e, parent) from e

        rate = rate_for_speed(speed)
        logger.debug("Synthesizing segment %d (%d chars) with %s at %s",
                     segment.index, len(segment.content), voice_id, rate)
        try:
            await self.engine.synthesize(segment.content, voice_id, rate, output_path)
        except SpeechMakerError:
            raise
        except (ConnectionError, TimeoutError) as e:
            raise classify_error(e, tool=getattr(self.engine, "name", "edge-tts")) from e
        except OSError as e:
            raise FilesystemError.from_os_error(e, output_path) from e
        except Exception as e:
            raise classify_error(e, tool=getattr(self.engine, "name", "edge-tts")) from e

        # Validate output: 0-byte file counts as failure
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ExternalProcessError(
                getattr(self.engine, "name", "edge-tts"),
                f"TTS produced no audio for segment {segment.index}",
            )
        return output_path


def validate_speed(speed: float) -> float:
    if isinstance(speed, bool) or not isinstance(speed, (int, float)):
        raise InputError(f"Speed must be a number, got {speed!r}")
    if speed < MIN_SPEED or speed > MAX_SPEED:
        raise InputError(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}")
    return float(speed)
