# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Persisted supervisory state - survives process restarts.

The file holds two fields, the state name and the Unix timestamp it was
entered::

    {"state": "ON_BATTERY", "entered_at": 1767225600.0}

Writes go to a temp file in the same directory which is fsynced and then
renamed over the target, so a crash leaves either the old or the new
record on disk, never a torn one.
"""

import enum
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class SupervisoryState(enum.Enum):
    """Where the supervisor is in the power-event cycle."""
    NORMAL = "NORMAL"
    ON_BATTERY = "ON_BATTERY"
    CLIENTS_DOWN = "CLIENTS_DOWN"
    POWER_RESTORED = "POWER_RESTORED"


@dataclass(frozen=True)
class StoredState:
    state: SupervisoryState
    entered_at: float
    ups_shutdown_issued: bool = False

    def to_dict(self) -> dict:
        d = {"state": self.state.value, "entered_at": self.entered_at}
        if self.ups_shutdown_issued:
            d["ups_shutdown_issued"] = True
        return d


class StateStore:
    def __init__(self, path: str, clock=time.time):
        self._path = Path(path)
        self._clock = clock
        self._save_count = 0

    @property
    def path(self) -> Path:
        return self._path

    def save(self, state: SupervisoryState, entered_at: float,
             ups_shutdown_issued: bool = False):
        """Atomically persist the state and its entry timestamp.

        Raises OSError if the write fails; the previous record stays valid.
        """
        record = StoredState(state, float(entered_at), ups_shutdown_issued)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(record.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            tmp_path.replace(self._path)
        except OSError:
            logger.exception("Failed to save state to %s", self._path)
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                pass
            raise
        self._save_count += 1
        logger.debug("Saved state %s (entered %.0f)", state.value, entered_at)

    def load(self) -> StoredState:
        """Return the last committed record, or (NORMAL, now) if there is none."""
        try:
            raw = self._path.read_text()
        except FileNotFoundError:
            return StoredState(SupervisoryState.NORMAL, self._clock())
        except OSError:
            logger.exception("Failed to read state file %s", self._path)
            return StoredState(SupervisoryState.NORMAL, self._clock())

        try:
            data = json.loads(raw)
            state = SupervisoryState(data["state"])
            entered_at = float(data["entered_at"])
            ups_shutdown_issued = bool(data.get("ups_shutdown_issued", False))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Ignoring unreadable state file %s: %s", self._path, e)
            return StoredState(SupervisoryState.NORMAL, self._clock())

        return StoredState(state, entered_at, ups_shutdown_issued)

    def clear(self):
        """Remove persisted state; the next load defaults to NORMAL."""
        try:
            self._path.unlink()
            logger.info("Cleared state file %s", self._path)
        except FileNotFoundError:
            pass

    def exists(self) -> bool:
        return self._path.exists()

    def check_writable(self):
        """Raise OSError unless the state directory can hold the state file."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        probe = self._path.with_suffix(self._path.suffix + ".probe")
        with open(probe, "w") as f:
            f.write("")
        probe.unlink()
