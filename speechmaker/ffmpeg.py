"""FFmpeg capability detection: bundled binary first, then system, then none."""

import asyncio
import logging
import os
import platform
import re
import shutil
import sys
from dataclasses import dataclass, replace


from speechmaker.constants import FFMPEG_BINARY, FFMPEG_LOOKUP_TIMEOUT, FFMPEG_PROBE_MAX_ATTEMPTS
from speechmaker.errors import FFMPEG_INSTALL_STEPS, CapabilityUnavailableError
from speechmaker.models import CapabilityStatus
from speechmaker.retry import RetryPolicy

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"ffmpeg version (\S+)")

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
}


def default_resources_root() -> str:
    """Directory holding resources/ffmpeg/...; overridable via SPEECHMAKER_HOME."""
    return os.environ.get(
        "SPEECHMAKER_HOME",
        os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    )


def bundled_ffmpeg_path(
    root: str | None = None,
    platform_name: str | None = None,
    machine: str | None = None,
) -> str:
    """Path of the bundled binary: <root>/resources/ffmpeg/<platform>/<arch>/ffmpeg[.exe]."""
    root = root or default_resources_root()
    platform_name = platform_name or sys.platform
    machine = (machine or platform.machine() or "unknown").lower()
    arch = _ARCH_ALIASES.get(machine, machine)
    exe = "ffmpeg.exe" if platform_name.startswith("win") else FFMPEG_BINARY
    return os.path.join(root, "resources", "ffmpeg", platform_name, arch, exe)


@dataclass
class ProbeOutcome:
    source: str
    path: str | None
    valid: bool = False
    version: str | None = None
    error: str | None = None


async def validate_ffmpeg(path: str, timeout: float = FFMPEG_LOOKUP_TIMEOUT) -> tuple[str | None, str | None]:
    """Run `<path> -version` and parse the version string.

    Returns (version, None) on success or (None, reason) on failure.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            path, "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return None, f"FFmpeg validation failed: {e}"

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return None, f"FFmpeg version check timed out after {timeout:.0f}s"

    match = _VERSION_RE.search(stdout.decode("utf-8", errors="replace"))
    if proc.returncode != 0 or not match:
        return None, "FFmpeg version check failed"
    return match.group(1), None


class BundledProbe:
    """Look for the binary shipped with the application."""

    source = "bundled"

    def __init__(self, path: str | None = None):
        self.path = path or bundled_ffmpeg_path()

    async def run(self, timeout: float) -> ProbeOutcome:
        if not os.path.isfile(self.path):
            return ProbeOutcome(self.source, self.path, error=f"No bundled FFmpeg at {self.path}")
        version, error = await validate_ffmpeg(self.path, timeout)
        return ProbeOutcome(self.source, self.path, valid=version is not None, version=version, error=error)


class SystemProbe:
    """Look for an installed binary on PATH, then try invoking it by name."""

    source = "system"

    def __init__(self, binary: str = FFMPEG_BINARY):
        self.binary = binary

    async def run(self, timeout: float) -> ProbeOutcome:
        path = shutil.which(self.binary) or self.binary
        version, error = await validate_ffmpeg(path, timeout)
        return ProbeOutcome(self.source, path, valid=version is not None, version=version, error=error)


class CapabilityDetector:
    """Probes ffmpeg availability by evaluating probe strategies in order.

    Each probe recomputes the status from scratch; callers read `status` for
    the latest snapshot, whose `path` is the binary to run. Probing only
    spawns processes; it changes no library state.
    """

    def __init__(
        self,
        strategies: list | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float = FFMPEG_LOOKUP_TIMEOUT,
    ):
        self.strategies = strategies if strategies is not None else [BundledProbe(), SystemProbe()]
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=FFMPEG_PROBE_MAX_ATTEMPTS)
        self.timeout = timeout
        self._status = CapabilityStatus()
        self._probed = False

    @property
    def status(self) -> CapabilityStatus:
        return replace(self._status)

    async def probe(self) -> CapabilityStatus:
        reasons = []
        for strategy in self.strategies:
            outcome = await strategy.run(self.timeout)
            if outcome.valid:
                self._status = CapabilityStatus(
                    available=True,
                    source=outcome.source,
                    path=outcome.path,
                    version=outcome.version,
                    validated=True,
                )
                self._probed = True
                logger.info("Using %s FFmpeg %s at %s", outcome.source, outcome.version, outcome.path)
                return self.status
            logger.debug("%s FFmpeg probe failed: %s", outcome.source, outcome.error)
            reasons.append(f"{outcome.source}: {outcome.error}")

        reason = "No working FFmpeg installation found"
        if reasons:
            reason = f"{reason} ({'; '.join(reasons)})"
        self._status = CapabilityStatus(available=False, source="none", error=reason)
        self._probed = True
        logger.warning(reason)
        return self.status

    async def ensure_available(self) -> CapabilityStatus:
        """Return the cached status if it is available, otherwise probe again."""
        if self._probed and self._status.available and self._status.validated:
            return self.status
        return await self.probe()

    async def probe_with_retry(self, max_attempts: int | None = None) -> CapabilityStatus:
        """Probe until ffmpeg is found or attempts run out; never raises."""
        policy = RetryPolicy(
            max_attempts=max_attempts or self.retry_policy.max_attempts,
            base_delay=self.retry_policy.base_delay,
            sleep=self.retry_policy.sleep,
        )

        async def attempt(n: int) -> CapabilityStatus:
            status = await self.probe()
            if not status.available:
                raise CapabilityUnavailableError("ffmpeg", status.error)
            return status

        try:
            return await policy.run(attempt, name="ffmpeg probe")
        except CapabilityUnavailableError:
            return self.status

    def installation_guide(self) -> list[str]:
        return list(FFMPEG_INSTALL_STEPS)
