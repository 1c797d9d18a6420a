"""Voice discovery and caching with retrying load cycles."""

import asyncio
import logging
from typing import Callable

from speechmaker.constants import VOICE_LOAD_MAX_ATTEMPTS
from speechmaker.errors import CapabilityUnavailableError, classify_error
from speechmaker.models import Voice, VoiceLoadEvent, VoiceLoadResult, VoiceLoadState
from speechmaker.retry import RetryPolicy

logger = logging.getLogger(__name__)

TROUBLESHOOTING_STEPS = [
    "Check your internet connection; neural voices are listed by an online service",
    "Check that no firewall or proxy is blocking speech.platform.bing.com",
    "Make sure the edge-tts package is installed: pip install edge-tts",
    "On Windows, check Settings > Time & Language > Speech for the speech subsystem",
    "Restart the application and retry voice loading",
]


def parse_voices(raw_voices: list[dict]) -> list[Voice]:
    """Map engine voice records to Voice entries.

    Records without a short name are skipped. The first English voice is
    marked as the default.
    """
    voices = []
    default_assigned = False
    for record in raw_voices:
        voice_id = (record.get("ShortName") or "").strip()
        if not voice_id:
            continue
        locale = record.get("Locale") or "Unknown"
        is_default = not default_assigned and locale.lower().startswith("en")
        default_assigned = default_assigned or is_default
        voices.append(Voice(
            id=voice_id,
            display_name=record.get("FriendlyName") or voice_id,
            gender=record.get("Gender") or "Unknown",
            locale=locale,
            is_default=is_default,
        ))
    return voices


class VoiceRegistry:
    """Owns the cached voice list and its loading state.

    One load cycle runs at a time: callers arriving while a load is in flight
    await that same load. The cached set is replaced wholesale on success.
    """

    def __init__(
        self,
        engine,
        retry_policy: RetryPolicy | None = None,
        listeners: list[Callable[[VoiceLoadEvent], None]] | None = None,
    ):
        self.engine = engine
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=VOICE_LOAD_MAX_ATTEMPTS)
        self.state = VoiceLoadState(max_attempts=self.retry_policy.max_attempts)
        self._voices: tuple[Voice, ...] = ()
        self._loaded = False
        self._inflight: asyncio.Task | None = None
        self._listeners = list(listeners or [])

    @property
    def voices(self) -> list[Voice]:
        return list(self._voices)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def add_listener(self, listener: Callable[[VoiceLoadEvent], None]) -> None:
        self._listeners.append(listener)

    def _emit(self, event: VoiceLoadEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Voice load listener failed on %s", event.phase)

    async def load_with_retry(self, max_attempts: int | None = None) -> VoiceLoadResult:
        """Discover voices, retrying with exponential backoff.

        Returns a VoiceLoadResult rather than raising; on exhaustion it carries
        the last error and the troubleshooting steps.
        """
        if self._inflight is None or self._inflight.done():
            attempts = max_attempts or self.retry_policy.max_attempts
            self._inflight = asyncio.create_task(self._load_cycle(attempts))
        return await asyncio.shield(self._inflight)

    async def _load_cycle(self, max_attempts: int) -> VoiceLoadResult:
        policy = RetryPolicy(
            max_attempts=max_attempts,
            base_delay=self.retry_policy.base_delay,
            sleep=self.retry_policy.sleep,
        )
        self.state = VoiceLoadState(is_loading=True, max_attempts=max_attempts)
        self._emit(VoiceLoadEvent("started", max_attempts=max_attempts))

        async def discover(attempt: int) -> list[Voice]:
            self.state.current_attempt = attempt
            self._emit(VoiceLoadEvent("attempt", attempt=attempt, max_attempts=max_attempts))
            voices = parse_voices(await self.engine.list_voices())
            if not voices:
                raise CapabilityUnavailableError(
                    "edge-tts", "No TTS voices found", retryable=True,
                    troubleshooting=list(TROUBLESHOOTING_STEPS),
                )
            return voices

        def scheduled(attempt: int, delay: float, exc: Exception) -> None:
            self.state.last_error = exc
            self._emit(VoiceLoadEvent(
                "retry_scheduled", attempt=attempt, max_attempts=max_attempts,
                delay=delay, error=str(exc),
            ))

        try:
            voices = await policy.run(discover, on_retry=scheduled, name="voice discovery")
        except Exception as e:
            error = classify_error(e, tool="edge-tts")
            self.state.last_error = error
            self.state.is_loading = False
            logger.error("Voice loading failed after %d attempts: %s", self.state.current_attempt, error)
            self._emit(VoiceLoadEvent(
                "failed", attempt=self.state.current_attempt, max_attempts=max_attempts,
                error=str(error),
            ))
            return VoiceLoadResult(
                success=False,
                attempt=self.state.current_attempt,
                error=error,
                troubleshooting=self.troubleshooting_steps(),
            )

        self._voices = tuple(voices)
        self._loaded = True
        self.state.is_loading = False
        self.state.last_error = None
        logger.info("Loaded %d voices on attempt %d", len(voices), self.state.current_attempt)
        self._emit(VoiceLoadEvent(
            "success", attempt=self.state.current_attempt, max_attempts=max_attempts,
            voice_count=len(voices),
        ))
        return VoiceLoadResult(success=True, attempt=self.state.current_attempt, voices=list(voices))

    async def get_available_voices(self) -> list[Voice]:
        """Return cached voices, loading them first if nothing has loaded yet."""
        if not self._loaded:
            result = await self.load_with_retry()
            if not result.success:
                raise result.error
        return self.voices

    def find(self, voice_id: str) -> Voice | None:
        for voice in self._voices:
            if voice.id == voice_id:
                return voice
        return None

    def default_voice(self) -> Voice | None:
        for voice in self._voices:
            if voice.is_default:
                return voice
        return self._voices[0] if self._voices else None

    def filter(self, substring: str) -> list[Voice]:
        """Voices whose id, name or locale contains substring (case-insensitive)."""
        needle = substring.lower()
        return [
            v for v in self._voices
            if needle in v.id.lower() or needle in v.display_name.lower() or needle in v.locale.lower()
        ]

    def troubleshooting_steps(self) -> list[str]:
        return list(TROUBLESHOOTING_STEPS)

    def status(self) -> dict:
        return {
            "loaded": self._loaded,
            "is_loading": self.state.is_loading,
            "voice_count": len(self._voices),
            "current_attempt": self.state.current_attempt,
            "max_attempts": self.state.max_attempts,
            "last_error": str(self.state.last_error) if self.state.last_error else None,
        }
