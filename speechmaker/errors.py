"""Error taxonomy for the conversion pipeline.

Hierarchy:
    SpeechMakerError (base)
    ├── InputError                  bad text, voice, speed or output folder; never retried
    ├── CapabilityUnavailableError  ffmpeg or the synthesis engine cannot be reached
    ├── ExternalProcessError        a tool ran but failed or returned garbage
    ├── FilesystemError             OS-level file failures, classified by errno
    └── InternalError               invariant violations; never retried

Every error carries the low-level message, a user-facing message and an
ordered list of troubleshooting steps.
"""

import errno
import os
from typing import Any

FFMPEG_INSTALL_STEPS = [
    "Download FFmpeg from https://ffmpeg.org/download.html",
    "Extract it and add the folder containing the ffmpeg binary to your PATH",
    "Restart SpeechMaker after installation",
    "Alternative: use WAV format, which does not require FFmpeg",
]

SYNTHESIS_UNAVAILABLE_STEPS = [
    "Check your internet connection; neural voices are streamed from the speech service",
    "Make sure the edge-tts package is installed in this environment",
    "Retry voice loading once the connection is back",
]


class SpeechMakerError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Low-level error description
        details: Additional context about the error
        retryable: Whether the job-level retry may try again
        user_message: Message suitable for showing to the user
        troubleshooting: Ordered corrective steps
    """

    kind = "error"
    default_user_message = "An unexpected error occurred."
    default_troubleshooting: list[str] = []

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        user_message: str | None = None,
        troubleshooting: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        self.user_message = user_message or self.default_user_message
        if troubleshooting is None:
            troubleshooting = list(self.default_troubleshooting)
        self.troubleshooting = troubleshooting

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "kind": self.kind,
            "message": self.message,
            "user_message": self.user_message,
            "troubleshooting": list(self.troubleshooting),
            "details": self.details,
            "retryable": self.retryable,
        }


class InputError(SpeechMakerError):
    """Invalid caller input. Surfaced immediately, never retried."""

    kind = "input"
    default_user_message = "The conversion request is invalid."

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        kwargs.setdefault("user_message", message)
        super().__init__(message, **kwargs)


class CapabilityUnavailableError(SpeechMakerError):
    """A required external tool cannot be located or validated."""

    kind = "capability_unavailable"

    def __init__(self, tool: str, message: str | None = None, retryable: bool = False, **kwargs: Any) -> None:
        self.tool = tool
        message = message or f"{tool} is not installed or not available"
        details = kwargs.pop("details", None) or {}
        details["tool"] = tool
        if tool == "ffmpeg":
            kwargs.setdefault(
                "user_message",
                "FFmpeg is required for MP3 conversion but is not installed.",
            )
            kwargs.setdefault("troubleshooting", list(FFMPEG_INSTALL_STEPS))
        else:
            kwargs.setdefault("user_message", "The text-to-speech engine is not available.")
            kwargs.setdefault("troubleshooting", list(SYNTHESIS_UNAVAILABLE_STEPS))
        super().__init__(message, details=details, retryable=retryable, **kwargs)


class ExternalProcessError(SpeechMakerError):
    """An external tool ran but failed or produced malformed output."""

    kind = "external_process"

    _GUIDANCE = {
        "ffmpeg": (
            "Audio processing failed.",
            [
                "Try converting to WAV format instead",
                "Check that FFmpeg is properly installed",
                "Check that there is enough disk space",
                "Restart the application and try again",
            ],
        ),
        "edge-tts": (
            "Text-to-speech conversion failed.",
            [
                "Try with a shorter text sample",
                "Check that the selected voice is working properly",
                "Try a different voice if available",
                "Restart the application and try again",
            ],
        ),
    }

    def __init__(self, tool: str, message: str, **kwargs: Any) -> None:
        self.tool = tool
        details = kwargs.pop("details", None) or {}
        details["tool"] = tool
        user_message, steps = self._GUIDANCE.get(
            tool, ("An external tool failed.", ["Restart the application and try again"])
        )
        kwargs.setdefault("user_message", user_message)
        kwargs.setdefault("troubleshooting", list(steps))
        kwargs.setdefault("retryable", True)
        super().__init__(message, details=details, **kwargs)


# errno → (user message template, troubleshooting)
_OS_ERROR_GUIDANCE = {
    errno.ENOENT: (
        "File or folder not found: {name}",
        [
            "Check that the file or folder exists at the specified location",
            "Verify the path is correct",
            "Make sure it has not been moved or deleted",
        ],
    ),
    errno.EACCES: (
        "Access denied: {name}",
        [
            "Check that the file is not open in another application",
            "Verify you have permission to read and write this location",
            "Choose a different output folder",
        ],
    ),
    errno.EISDIR: (
        "Expected a file but found a folder: {name}",
        ["Select a file rather than a folder"],
    ),
    errno.EMFILE: (
        "Too many files are currently open",
        [
            "Close some applications and try again",
            "Restart the application if the problem persists",
        ],
    ),
    errno.ENOSPC: (
        "Not enough disk space to write {name}",
        [
            "Free up disk space on the output drive",
            "Choose an output folder on a different drive",
        ],
    ),
}
_OS_ERROR_GUIDANCE[errno.EPERM] = _OS_ERROR_GUIDANCE[errno.EACCES]
_OS_ERROR_GUIDANCE[errno.ENFILE] = _OS_ERROR_GUIDANCE[errno.EMFILE]


class FilesystemError(SpeechMakerError):
    """OS-level file failure. Retryable at the job level."""

    kind = "filesystem"
    default_user_message = "A file operation failed."
    default_troubleshooting = [
        "Check that the output folder exists and is writable",
        "Check that there is enough disk space",
        "Restart the application and try again",
    ]

    def __init__(self, message: str, path: str | None = None, code: int | None = None, **kwargs: Any) -> None:
        self.path = path
        self.code = code
        details = kwargs.pop("details", None) or {}
        if path:
            details["path"] = path
        if code is not None:
            details["errno"] = errno.errorcode.get(code, code)
        kwargs.setdefault("retryable", True)
        super().__init__(message, details=details, **kwargs)

    @classmethod
    def from_os_error(cls, exc: OSError, path: str | None = None) -> "FilesystemError":
        """Build a FilesystemError with guidance chosen from the errno."""
        path = path or exc.filename
        name = os.path.basename(str(path)) if path else "the file"
        guidance = _OS_ERROR_GUIDANCE.get(exc.errno)
        kwargs: dict[str, Any] = {}
        if guidance:
            template, steps = guidance
            kwargs["user_message"] = template.format(name=name)
            kwargs["troubleshooting"] = list(steps)
        err = cls(str(exc), path=path, code=exc.errno, **kwargs)
        err.__cause__ = exc
        return err


class InternalError(SpeechMakerError):
    """Invariant violation. Always fatal."""

    kind = "internal"
    default_user_message = "An internal error occurred. Please report this problem."
    default_troubleshooting = ["Restart the application", "Report the problem with the log output"]

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs["retryable"] = False
        super().__init__(message, **kwargs)


def classify_error(exc: BaseException, tool: str = "edge-tts") -> SpeechMakerError:
    """Return `exc` as the most specific SpeechMakerError.

    Unknown exceptions become ExternalProcessError for `tool`; OS errors
    become FilesystemError.
    """
    if isinstance(exc, SpeechMakerError):
        return exc
    if isinstance(exc, (ConnectionError, TimeoutError)):
        err = CapabilityUnavailableError(tool, f"{tool} unreachable: {exc}", retryable=True)
        err.__cause__ = exc
        return err
    if isinstance(exc, OSError):
        return FilesystemError.from_os_error(exc)
    err = ExternalProcessError(tool, f"{type(exc).__name__}: {exc}")
    err.__cause__ = exc
    return err
