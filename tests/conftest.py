# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Pytest configuration - shared environment fixture and report metadata."""

import os
import platform
import subprocess
from datetime import datetime

import pytest

# Every environment variable family Config reads
SUPERVISOR_ENV_PREFIXES = (
    "UPS_", "BATTERY_", "POWER_", "MIN_", "CRITICAL_", "CHECK_", "SHUTDOWN_",
    "WAKE_", "SSH_", "WOL_", "SUPERVISOR_", "MQTT_",
)


def _git(cmd: str) -> str:
    """Run a git command and return stripped output, or '' on failure."""
    try:
        return subprocess.check_output(
            ["git"] + cmd.split(), stderr=subprocess.DEVNULL
        ).decode().strip()
    except Exception:
        return ""


@pytest.fixture
def clean_env(monkeypatch):
    """Remove supervisor settings inherited from the host so defaults apply."""
    for key in list(os.environ):
        if key.startswith(SUPERVISOR_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


def pytest_configure(config):
    """Add project metadata to the HTML report (only if pytest-metadata installed)."""
    try:
        from pytest_metadata.plugin import metadata_key
    except ImportError:
        return

    config.stash[metadata_key]["Project"] = "UPS Fleet Supervisor"
    config.stash[metadata_key]["Git Commit"] = _git("rev-parse --short HEAD")
    config.stash[metadata_key]["Python"] = platform.python_version()
    config.stash[metadata_key]["Timestamp"] = datetime.now().isoformat(timespec="seconds")
