"""Read-only application settings.

Settings live in a flat JSON file. Every key is validated on load; invalid or
missing values fall back to defaults with a warning. This module never writes
the file.
"""

import json
import logging
import os
from dataclasses import dataclass

from speechmaker.constants import (
    DEFAULT_OUTPUT_FORMAT,
    DEFAULT_SPEED,
    MAX_CHUNK_LENGTH,
    MAX_CHUNK_LENGTH_LIMIT,
    MAX_SPEED,
    MIN_CHUNK_LENGTH_LIMIT,
    MIN_SPEED,
    OUTPUT_FORMATS,
    SETTINGS_DIR_NAME,
    SETTINGS_FILENAME,
)
from speechmaker.files import default_output_folder

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    last_selected_voice: str | None = None
    default_output_format: str = DEFAULT_OUTPUT_FORMAT
    default_output_path: str | None = None
    voice_speed: float = DEFAULT_SPEED
    max_chunk_length: int = MAX_CHUNK_LENGTH

    def output_folder(self) -> str:
        """Configured output folder, or the first writable default."""
        return self.default_output_path or default_output_folder()


def default_settings_path() -> str:
    return os.path.join(os.path.expanduser("~"), SETTINGS_DIR_NAME, SETTINGS_FILENAME)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_settings(raw: dict) -> Settings:
    """Build Settings from a raw mapping, keeping only valid values."""
    settings = Settings()

    voice = raw.get("last_selected_voice")
    if isinstance(voice, str) and voice:
        settings.last_selected_voice = voice
    elif voice is not None:
        logger.warning("Ignoring invalid last_selected_voice: %r", voice)

    fmt = raw.get("default_output_format")
    if fmt in OUTPUT_FORMATS:
        settings.default_output_format = fmt
    elif fmt is not None:
        logger.warning("Ignoring invalid default_output_format: %r", fmt)

    path = raw.get("default_output_path")
    if isinstance(path, str) and path:
        if os.path.isdir(path) and os.access(path, os.W_OK):
            settings.default_output_path = path
        else:
            logger.warning("Saved output path %s is not accessible, using default", path)
    elif path is not None:
        logger.warning("Ignoring invalid default_output_path: %r", path)

    speed = raw.get("voice_speed")
    if _is_number(speed) and MIN_SPEED <= speed <= MAX_SPEED:
        settings.voice_speed = float(speed)
    elif speed is not None:
        logger.warning("Ignoring out-of-range voice_speed: %r", speed)

    chunk = raw.get("max_chunk_length")
    if isinstance(chunk, int) and not isinstance(chunk, bool) and \
            MIN_CHUNK_LENGTH_LIMIT <= chunk <= MAX_CHUNK_LENGTH_LIMIT:
        settings.max_chunk_length = chunk
    elif chunk is not None:
        logger.warning("Ignoring out-of-range max_chunk_length: %r", chunk)

    return settings


def load_settings(path: str | None = None) -> Settings:
    """Load settings from path (default ~/.speechmaker/settings.json).

    A missing file gives defaults silently; a malformed file gives defaults
    with a warning.
    """
    path = path or default_settings_path()
    if not os.path.exists(path):
        logger.debug("Settings file %s not found, using defaults", path)
        return Settings()

    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Malformed settings file %s, using defaults: %s", path, e)
        return Settings()

    if not isinstance(raw, dict):
        logger.warning("Settings file %s is not a JSON object, using defaults", path)
        return Settings()
    return validate_settings(raw)
