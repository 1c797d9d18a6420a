"""Merge audio units and re-encode WAV to MP3 via pydub/ffmpeg."""

import asyncio
import errno
import logging
import os
import re
import shutil
import tempfile

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError, CouldntEncodeError

from speechmaker.constants import (
    MERGE_BATCH_SIZE,
    MERGE_DIRECT_LIMIT,
    MERGE_TEMP_PREFIX,
    SUPPORTED_SAMPLE_RATES,
)
from speechmaker.errors import (
    CapabilityUnavailableError,
    ExternalProcessError,
    FilesystemError,
    InputError,
    InternalError,
)
from speechmaker.files import remove_path
from speechmaker.models import AudioUnit, TranscodeOptions

logger = logging.getLogger(__name__)

_BITRATE_RE = re.compile(r"^\d{2,3}k$")


def validate_options(options: TranscodeOptions | None) -> TranscodeOptions:
    """Check bitrate and sample rate once, at the gateway boundary."""
    if options is None:
        return TranscodeOptions()
    if not isinstance(options.bitrate, str) or not _BITRATE_RE.match(options.bitrate):
        raise InputError(f"Invalid bitrate {options.bitrate!r}; expected e.g. '128k'")
    if options.sample_rate not in SUPPORTED_SAMPLE_RATES:
        raise InputError(
            f"Unsupported sample rate {options.sample_rate}; "
            f"expected one of {', '.join(str(r) for r in SUPPORTED_SAMPLE_RATES)}"
        )
    return options


def _concatenate(paths: list[str], output_path: str) -> None:
    """One merge pass: append each WAV in order and write a single WAV."""
    result = None
    for path in paths:
        try:
            audio = AudioSegment.from_wav(path)
        except CouldntDecodeError as e:
            raise ExternalProcessError("ffmpeg", f"Audio merging failed on {path}: {e}") from e
        result = audio if result is None else result + audio
    result.export(output_path, format="wav")


def _encode_mp3(ffmpeg_path: str, input_path: str, output_path: str, options: TranscodeOptions) -> None:
    try:
        audio = AudioSegment.from_wav(input_path)
        # export() runs self.converter; set it per segment, not on the class
        audio.converter = ffmpeg_path
        audio.export(
            output_path,
            format="mp3",
            codec="libmp3lame",
            bitrate=options.bitrate,
            parameters=["-ar", str(options.sample_rate)],
        )
    except (CouldntDecodeError, CouldntEncodeError) as e:
        raise ExternalProcessError("ffmpeg", f"MP3 conversion failed: {e}") from e


def _require_file(path: str) -> None:
    if not os.path.isfile(path):
        raise FilesystemError.from_os_error(
            FileNotFoundError(errno.ENOENT, "No such file", path), path
        )


class TranscodeGateway:
    """Merges audio units and transcodes the merged artifact.

    Up to `direct_limit` inputs merge in one pass. Larger inputs merge in
    batches of `batch_size` into a temporary directory next to the output,
    then the batch files merge once more into the output. Batch files are
    never batched again.
    """

    def __init__(
        self,
        detector,
        direct_limit: int = MERGE_DIRECT_LIMIT,
        batch_size: int = MERGE_BATCH_SIZE,
    ):
        self.detector = detector
        self.direct_limit = direct_limit
        self.batch_size = batch_size

    async def merge_units(self, units: list[AudioUnit], output_path: str) -> str:
        """Merge units in segment order, whatever order they arrive in."""
        ordered = sorted(units, key=lambda u: u.segment_index)
        return await self.merge([u.file_path for u in ordered], output_path)

    async def merge(self, paths: list[str], output_path: str) -> str:
        """Merge WAV files in the given order into output_path."""
        if not paths:
            raise InternalError("No audio chunks provided for merging")
        for path in paths:
            _require_file(path)

        out_dir = os.path.dirname(output_path)
        if out_dir:
            try:
                await asyncio.to_thread(os.makedirs, out_dir, exist_ok=True)
            except OSError as e:
                raise FilesystemError.from_os_error(e, out_dir) from e

        if len(paths) == 1:
            await self._copy(paths[0], output_path)
        elif len(paths) <= self.direct_limit:
            await self._merge_pass(paths, output_path)
        else:
            await self._merge_batched(paths, output_path)
        return output_path

    async def _merge_batched(self, paths: list[str], output_path: str) -> None:
        try:
            temp_dir = await asyncio.to_thread(
                tempfile.mkdtemp, prefix=MERGE_TEMP_PREFIX, dir=os.path.dirname(output_path) or None
            )
        except OSError as e:
            raise FilesystemError.from_os_error(e, output_path) from e

        try:
            batch_files = []
            for start in range(0, len(paths), self.batch_size):
                batch_path = os.path.join(temp_dir, f"batch_{start // self.batch_size:04d}.wav")
                await self._merge_pass(paths[start:start + self.batch_size], batch_path)
                batch_files.append(batch_path)

            logger.debug("Merged %d units into %d batch files", len(paths), len(batch_files))
            if len(batch_files) == 1:
                await self._copy(batch_files[0], output_path)
            else:
                await self._merge_pass(batch_files, output_path)
        finally:
            await asyncio.to_thread(remove_path, temp_dir)

    async def _merge_pass(self, paths: list[str], output_path: str) -> None:
        logger.debug("Merging %d files into %s", len(paths), output_path)
        try:
            await asyncio.to_thread(_concatenate, paths, output_path)
        except OSError as e:
            raise FilesystemError.from_os_error(e, output_path) from e

    async def _copy(self, source: str, output_path: str) -> None:
        try:
            await asyncio.to_thread(shutil.copyfile, source, output_path)
        except OSError as e:
            raise FilesystemError.from_os_error(e, output_path) from e

    async def transcode(
        self,
        input_path: str,
        output_path: str,
        options: TranscodeOptions | None = None,
    ) -> str:
        """Re-encode a WAV file to MP3. Requires ffmpeg."""
        options = validate_options(options)
        status = await self.detector.ensure_available()
        if not status.available:
            raise CapabilityUnavailableError(
                "ffmpeg",
                "FFmpeg is not installed or not available in PATH. "
                "Please install FFmpeg to convert to MP3 format.",
                retryable=False,
                details={"reason": status.error},
            )
        _require_file(input_path)

        out_dir = os.path.dirname(output_path)
        try:
            if out_dir:
                await asyncio.to_thread(os.makedirs, out_dir, exist_ok=True)
            await asyncio.to_thread(_encode_mp3, status.path, input_path, output_path, options)
        except OSError as e:
            raise FilesystemError.from_os_error(e, output_path) from e

        logger.info("MP3 conversion completed: %s (%s, %d Hz)", output_path, options.bitrate, options.sample_rate)
        return output_path
