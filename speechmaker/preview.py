"""Fire-and-forget preview playback through the platform audio player."""

import asyncio
import errno
import logging
import os
import sys

from speechmaker.constants import PREVIEW_TIMEOUT
from speechmaker.errors import CapabilityUnavailableError, FilesystemError

logger = logging.getLogger(__name__)


def player_command(file_path: str, platform_name: str | None = None) -> list[str]:
    platform_name = platform_name or sys.platform
    if platform_name == "darwin":
        return ["afplay", file_path]
    if platform_name.startswith("win"):
        return ["cmd", "/c", "start", "", file_path]
    return ["aplay", file_path]


async def play_preview(file_path: str, timeout: float = PREVIEW_TIMEOUT) -> None:
    """Play file_path, stopping the player after `timeout` seconds.

    Reaching the timeout is not an error. A missing file raises
    FilesystemError; a missing player raises CapabilityUnavailableError.
    """
    if not os.path.isfile(file_path):
        raise FilesystemError.from_os_error(
            FileNotFoundError(errno.ENOENT, "No such file", file_path), file_path
        )

    cmd = player_command(file_path)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError as e:
        raise CapabilityUnavailableError(
            cmd[0], f"Audio player {cmd[0]} not found",
            user_message="No audio player is available for previews.",
            troubleshooting=["Open the output file in your media player instead"],
        ) from e

    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug("Preview of %s stopped after %.0fs", file_path, timeout)
        proc.kill()
        await proc.wait()
        return

    if proc.returncode != 0:
        logger.warning("Audio player exited with code %s for %s", proc.returncode, file_path)
