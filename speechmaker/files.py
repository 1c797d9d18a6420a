"""Input text files, output locations and best-effort cleanup."""

import logging
import os
import re
import shutil
import tempfile
from datetime import datetime

from speechmaker.constants import (
    DEFAULT_OUTPUT_FOLDER_NAME,
    MAX_TEXT_FILE_BYTES,
    OUTPUT_BASENAME,
    TEXT_FILE_EXTENSIONS,
)
from speechmaker.errors import FilesystemError, InputError

logger = logging.getLogger(__name__)


def read_text_file(file_path: str) -> str:
    """Read a UTF-8 .txt file for conversion.

    Rejects unsupported extensions, files over 10MB and files without any
    readable text.
    """
    ext = os.path.splitext(file_path)[1].lower()
    if ext not in TEXT_FILE_EXTENSIONS:
        raise InputError(
            f"Unsupported file type: {ext or '(none)'}",
            user_message=f"Unsupported file format: {os.path.basename(file_path)}",
            troubleshooting=[
                "Only .txt files are supported",
                "Save your document as plain text (.txt)",
                "Or paste the text directly",
            ],
        )

    try:
        size = os.path.getsize(file_path)
        if size > MAX_TEXT_FILE_BYTES:
            raise InputError(
                f"File too large: {size / 1024 / 1024:.2f}MB. "
                f"Maximum size is {MAX_TEXT_FILE_BYTES // 1024 // 1024}MB.",
                troubleshooting=[
                    "Split the file into smaller parts",
                    "Paste smaller portions of text directly",
                ],
            )
        with open(file_path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise FilesystemError.from_os_error(e, file_path) from e
    except UnicodeDecodeError as e:
        raise InputError(
            f"File is not valid UTF-8 text: {os.path.basename(file_path)}",
            troubleshooting=["Re-save the file with UTF-8 encoding"],
        ) from e

    if not text.strip():
        raise InputError(
            "File is empty or contains no readable text",
            user_message=f"File is empty: {os.path.basename(file_path)}",
            troubleshooting=[
                "Check that the file contains text",
                "Try selecting a different file",
            ],
        )
    return text


def _is_writable_dir(path: str) -> bool:
    """Create path if needed and check a file can be written there."""
    try:
        os.makedirs(path, exist_ok=True)
        probe = os.path.join(path, ".write-test")
        with open(probe, "w") as f:
            f.write("test")
        os.remove(probe)
        return True
    except OSError as e:
        logger.warning("Cannot create or write to directory %s: %s", path, e)
        return False


def default_output_folder() -> str:
    """First writable of ~/Documents/SpeechMaker, ~/SpeechMaker, the temp dir."""
    home = os.path.expanduser("~")
    for candidate in (
        os.path.join(home, "Documents", DEFAULT_OUTPUT_FOLDER_NAME),
        os.path.join(home, DEFAULT_OUTPUT_FOLDER_NAME),
    ):
        if _is_writable_dir(candidate):
            return candidate
    return tempfile.gettempdir()


def sanitize_basename(name: str) -> str:
    """Replace characters that are invalid in filenames."""
    cleaned = re.sub(r'[<>:"/\\|?*\x00-\x1f]+', "_", name).strip(" ._")
    return cleaned or OUTPUT_BASENAME


def unique_filename(directory: str, base_name: str, extension: str) -> str:
    """Return a path in directory that does not exist yet.

    "speech" + ".wav" → speech.wav, then speech_1.wav, speech_2.wav...
    """
    if not directory or not base_name or not extension:
        raise InputError("Directory, base name and extension are required")
    if not extension.startswith("."):
        extension = f".{extension}"
    base = sanitize_basename(base_name)
    candidate = os.path.join(directory, f"{base}{extension}")
    counter = 1
    while os.path.exists(candidate):
        candidate = os.path.join(directory, f"{base}_{counter}{extension}")
        counter += 1
    return candidate


def output_filename(directory: str, output_format: str, now: datetime | None = None) -> str:
    """Timestamped output path, e.g. speech_2024-05-01T10-22-03.mp3."""
    now = now or datetime.now()
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    return unique_filename(directory, f"{OUTPUT_BASENAME}_{stamp}", f".{output_format}")


def remove_path(path: str) -> bool:
    """Delete a file or directory tree. Errors are logged, never raised.

    Returns True if something was removed.
    """
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        elif os.path.exists(path):
            os.remove(path)
        else:
            return False
        return True
    except OSError as e:
        logger.warning("Failed to clean up %s: %s", path, e)
        return False
