# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Simulated UPS for running without real hardware.

By default the mock cycles through a scripted outage: mains present, then
an outage that drains the battery, then mains back while it recharges.
Tests drive it directly with ``set_on_battery`` / ``set_charge`` /
``set_reachable`` instead.
"""

import logging
import time

from .ups_model import STATUS_LOW_BATTERY, STATUS_ON_BATTERY, STATUS_ONLINE, UPSStatus

logger = logging.getLogger(__name__)


class MockUPS:
    """Simulates a UPS on mains or battery with a draining/recharging charge."""

    def __init__(self, charge: float = 100.0, on_battery: bool = False,
                 simulate: bool = False, online_period: float = 120.0,
                 outage_period: float = 180.0, drain_per_min: float = 10.0,
                 charge_per_min: float = 5.0, clock=time.monotonic):
        self._charge = charge
        self._on_battery = on_battery
        self._reachable = True
        self._simulate = simulate
        self._online_period = online_period
        self._outage_period = outage_period
        self._drain_per_min = drain_per_min
        self._charge_per_min = charge_per_min
        self._clock = clock
        self._start = clock()
        self._last_update = self._start
        self._shutdown_count = 0
        self._queries = 0

    # --- Test controls ---

    def set_on_battery(self, on_battery: bool):
        self._on_battery = on_battery

    def set_charge(self, charge: float | None):
        self._charge = charge

    def set_reachable(self, reachable: bool):
        self._reachable = reachable

    @property
    def shutdown_count(self) -> int:
        return self._shutdown_count

    # --- Simulation ---

    def _advance(self):
        if not self._simulate:
            return
        now = self._clock()
        elapsed_min = (now - self._last_update) / 60.0
        self._last_update = now

        # Charge moves according to the source that was active since last update
        if self._charge is not None:
            if self._on_battery:
                self._charge = max(0.0, self._charge - self._drain_per_min * elapsed_min)
            else:
                self._charge = min(100.0, self._charge + self._charge_per_min * elapsed_min)

        cycle = self._online_period + self._outage_period
        phase = (now - self._start) % cycle
        was_on_battery = self._on_battery
        self._on_battery = phase >= self._online_period
        if self._on_battery != was_on_battery:
            logger.info("Mock UPS: %s", "mains lost" if self._on_battery else "mains restored")

    # --- UPSProbe ---

    async def status(self) -> UPSStatus | None:
        self._queries += 1
        if not self._reachable:
            return None
        self._advance()
        flags = {STATUS_ON_BATTERY if self._on_battery else STATUS_ONLINE}
        if self._on_battery and self._charge is not None and self._charge <= 20:
            flags.add(STATUS_LOW_BATTERY)
        return UPSStatus(flags=frozenset(flags))

    async def battery_charge(self) -> float | None:
        self._queries += 1
        if not self._reachable or self._charge is None:
            return None
        return round(self._charge, 1)

    async def ping(self) -> bool:
        return self._reachable

    async def shutdown_ups(self) -> bool:
        self._shutdown_count += 1
        logger.warning("Mock UPS: shutdown commanded (count=%d)", self._shutdown_count)
        return True

    @property
    def required_commands(self) -> list[str]:
        return []

    @property
    def consecutive_failures(self) -> int:
        return 0 if self._reachable else 1

    def get_health(self) -> dict:
        return {
            "target": "mock",
            "probe": "mock",
            "total_queries": self._queries,
            "consecutive_failures": self.consecutive_failures,
            "reachable": self._reachable,
        }

    def close(self) -> None:
        pass
