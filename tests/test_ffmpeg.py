"""Tests for ffmpeg capability detection."""

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydub import AudioSegment

from speechmaker.errors import FFMPEG_INSTALL_STEPS
from speechmaker.ffmpeg import (
    BundledProbe,
    CapabilityDetector,
    ProbeOutcome,
    SystemProbe,
    bundled_ffmpeg_path,
    validate_ffmpeg,
)
from speechmaker.retry import RetryPolicy

VERSION_OUTPUT = b"ffmpeg version 6.1.1 Copyright (c) 2000-2023 the FFmpeg developers\n"


class FakeProbe:
    """Probe strategy returning scripted validity results."""

    def __init__(self, source, results):
        self.source = source
        self.results = list(results)
        self.calls = 0

    async def run(self, timeout):
        self.calls += 1
        valid = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        path = f"/opt/{self.source}/ffmpeg"
        if valid:
            return ProbeOutcome(self.source, path, valid=True, version="6.1")
        return ProbeOutcome(self.source, path, error=f"{self.source} missing")


def _proc(stdout=VERSION_OUTPUT, returncode=0):
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, b""))
    proc.wait = AsyncMock(return_value=returncode)
    proc.returncode = returncode
    return proc


# --- bundled path ---

def test_bundled_path_linux():
    path = bundled_ffmpeg_path("/app", "linux", "x86_64")
    assert path == os.path.join("/app", "resources", "ffmpeg", "linux", "x64", "ffmpeg")


def test_bundled_path_windows():
    path = bundled_ffmpeg_path("/app", "win32", "AMD64")
    assert path.endswith(os.path.join("win32", "x64", "ffmpeg.exe"))


def test_bundled_path_mac_arm():
    path = bundled_ffmpeg_path("/app", "darwin", "arm64")
    assert path == os.path.join("/app", "resources", "ffmpeg", "darwin", "arm64", "ffmpeg")


def test_bundled_path_env_root(monkeypatch):
    monkeypatch.setenv("SPEECHMAKER_HOME", "/srv/speechmaker")
    assert bundled_ffmpeg_path(platform_name="linux", machine="aarch64").startswith("/srv/speechmaker")


# --- validate_ffmpeg ---

@patch("speechmaker.ffmpeg.asyncio.create_subprocess_exec", new_callable=AsyncMock)
def test_validate_parses_version(mock_exec):
    mock_exec.return_value = _proc()
    version, error = asyncio.run(validate_ffmpeg("/usr/bin/ffmpeg"))
    assert version == "6.1.1"
    assert error is None
    assert mock_exec.call_args[0][:2] == ("/usr/bin/ffmpeg", "-version")


@patch("speechmaker.ffmpeg.asyncio.create_subprocess_exec", new_callable=AsyncMock)
def test_validate_bad_output(mock_exec):
    mock_exec.return_value = _proc(stdout=b"not a thing\n")
    version, error = asyncio.run(validate_ffmpeg("/usr/bin/ffmpeg"))
    assert version is None
    assert error == "FFmpeg version check failed"


@patch("speechmaker.ffmpeg.asyncio.create_subprocess_exec", new_callable=AsyncMock)
def test_validate_nonzero_exit(mock_exec):
    mock_exec.return_value = _proc(returncode=1)
    version, _ = asyncio.run(validate_ffmpeg("/usr/bin/ffmpeg"))
    assert version is None


@patch("speechmaker.ffmpeg.asyncio.create_subprocess_exec", new_callable=AsyncMock)
def test_validate_missing_binary(mock_exec):
    mock_exec.side_effect = FileNotFoundError(2, "No such file", "ffmpeg")
    version, error = asyncio.run(validate_ffmpeg("ffmpeg"))
    assert version is None
    assert error.startswith("FFmpeg validation failed")


@patch("speechmaker.ffmpeg.asyncio.create_subprocess_exec", new_callable=AsyncMock)
def test_validate_timeout_kills(mock_exec):
    proc = _proc()

    async def hang():
        await asyncio.sleep(10)

    proc.communicate = hang
    mock_exec.return_value = proc
    version, error = asyncio.run(validate_ffmpeg("ffmpeg", timeout=0.01))
    assert version is None
    assert "timed out" in error
    proc.kill.assert_called_once()


# --- probes ---

def test_bundled_probe_missing_file(tmp_path):
    outcome = asyncio.run(BundledProbe(str(tmp_path / "ffmpeg")).run(1.0))
    assert not outcome.valid
    assert outcome.source == "bundled"
    assert "No bundled FFmpeg" in outcome.error


@patch("speechmaker.ffmpeg.validate_ffmpeg", new_callable=AsyncMock)
def test_bundled_probe_validates_existing(mock_validate, tmp_path):
    binary = tmp_path / "ffmpeg"
    binary.write_bytes(b"\x7fELF")
    mock_validate.return_value = ("6.0", None)
    outcome = asyncio.run(BundledProbe(str(binary)).run(1.0))
    assert outcome.valid
    assert outcome.version == "6.0"


@patch("speechmaker.ffmpeg.validate_ffmpeg", new_callable=AsyncMock)
@patch("speechmaker.ffmpeg.shutil.which", return_value=None)
def test_system_probe_falls_back_to_name(mock_which, mock_validate):
    mock_validate.return_value = (None, "FFmpeg validation failed: not found")
    outcome = asyncio.run(SystemProbe().run(1.0))
    assert mock_validate.call_args[0][0] == "ffmpeg"
    assert not outcome.valid
    assert outcome.source == "system"


# --- CapabilityDetector ---

def test_detector_bundled_first():
    bundled, system = FakeProbe("bundled", [True]), FakeProbe("system", [True])
    detector = CapabilityDetector([bundled, system])
    status = asyncio.run(detector.probe())
    assert status.available and status.validated
    assert status.source == "bundled"
    assert system.calls == 0
    assert status.path == "/opt/bundled/ffmpeg"


def test_probe_leaves_pydub_converter_alone():
    before = AudioSegment.converter
    asyncio.run(CapabilityDetector([FakeProbe("bundled", [True])]).probe())
    assert AudioSegment.converter == before


def test_detector_falls_back_to_system():
    detector = CapabilityDetector([FakeProbe("bundled", [False]), FakeProbe("system", [True])])
    status = asyncio.run(detector.probe())
    assert status.source == "system"
    assert status.path == "/opt/system/ffmpeg"
    assert status.version == "6.1"


def test_detector_none_available():
    detector = CapabilityDetector([FakeProbe("bundled", [False]), FakeProbe("system", [False])])
    status = asyncio.run(detector.probe())
    assert not status.available
    assert status.source == "none"
    assert "bundled missing" in status.error
    assert "system missing" in status.error
    assert detector.status == status


def test_status_is_a_snapshot():
    detector = CapabilityDetector([FakeProbe("system", [True])])
    asyncio.run(detector.probe())
    snapshot = detector.status
    snapshot.available = False
    assert detector.status.available


def test_ensure_available_caches_success():
    probe = FakeProbe("system", [True])
    detector = CapabilityDetector([probe])

    async def twice():
        await detector.ensure_available()
        return await detector.ensure_available()

    assert asyncio.run(twice()).available
    assert probe.calls == 1


def test_ensure_available_reprobes_after_failure():
    probe = FakeProbe("system", [False, True])
    detector = CapabilityDetector([probe])
    assert not asyncio.run(detector.ensure_available()).available
    assert asyncio.run(detector.ensure_available()).available
    assert probe.calls == 2


def test_probe_with_retry_exhausts(fake_sleep):
    probe = FakeProbe("system", [False])
    detector = CapabilityDetector([probe], RetryPolicy(sleep=fake_sleep))
    status = asyncio.run(detector.probe_with_retry())
    assert not status.available
    assert probe.calls == 3
    assert fake_sleep.delays == [2.0, 4.0]


def test_probe_with_retry_recovers(fake_sleep):
    probe = FakeProbe("system", [False, True])
    detector = CapabilityDetector([probe], RetryPolicy(sleep=fake_sleep))
    status = asyncio.run(detector.probe_with_retry(max_attempts=5))
    assert status.available
    assert probe.calls == 2
    assert fake_sleep.delays == [2.0]


def test_installation_guide():
    assert CapabilityDetector([]).installation_guide() == FFMPEG_INSTALL_STEPS
