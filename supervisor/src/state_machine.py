# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Power state machine - the supervisory control loop.

State cycle
-----------
NORMAL          -- mains present, clients up.
ON_BATTERY      -- mains lost; waiting BATTERY_WAIT_TIME before acting so
                   short blips never touch the fleet.
CLIENTS_DOWN    -- fleet shut down; waiting for mains, or powering off the
                   UPS itself once charge falls to the critical floor.
POWER_RESTORED  -- mains back; waiting for POWER_RESTORE_WAIT of stable
                   power AND MIN_BATTERY_LEVEL charge before waking clients.

Every transition is written through the StateStore before the next poll so
a restart resumes mid-cycle instead of re-running shutdown or wake.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from .fleet import FleetController
from .state_store import StateStore, StoredState, SupervisoryState
from .transport import UPSProbe
from .ups_model import PowerReading

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], None]
ReadingCallback = Callable[[PowerReading], None]

RESTART_RESUME = "resume"
RESTART_RESET = "reset"


@dataclass
class TransitionContext:
    """Timers carried between poll iterations."""
    battery_start: float | None = None      # when the current outage began
    restore_start: float | None = None      # when mains came back
    shutdown_issued: bool = False           # shutdown_all() done this battery event

    def to_dict(self) -> dict[str, Any]:
        return {
            "battery_start": self.battery_start,
            "restore_start": self.restore_start,
            "shutdown_issued": self.shutdown_issued,
        }


class PowerStateMachine:
    def __init__(self, probe: UPSProbe, fleet: FleetController, store: StateStore, *,
                 battery_wait_time: float = 60, power_restore_wait: float = 600,
                 min_battery_level: float = 90, critical_battery_level: float = 40,
                 poll_interval: float = 5.0, restart_policy: str = RESTART_RESUME,
                 clock=time.time, on_event: EventCallback | None = None,
                 on_reading: ReadingCallback | None = None):
        self.probe = probe
        self.fleet = fleet
        self.store = store
        self.battery_wait_time = battery_wait_time
        self.power_restore_wait = power_restore_wait
        self.min_battery_level = min_battery_level
        self.critical_battery_level = critical_battery_level
        self.poll_interval = poll_interval
        self.restart_policy = restart_policy
        self._clock = clock
        self._on_event = on_event
        self._on_reading = on_reading

        self.state = SupervisoryState.NORMAL
        self.entered_at = clock()
        self.context = TransitionContext()
        self.last_reading: PowerReading | None = None

        self._stop_event = asyncio.Event()
        self._running = False
        self._terminated = False
        self._ups_shutdown_ok: bool | None = None

        self._events: list[dict[str, Any]] = []
        self._max_events = 100

        # Health counters
        self._poll_count = 0
        self._poll_errors = 0
        self._comm_errors = 0
        self._persist_errors = 0
        self._wait_polls = 0

    @classmethod
    def from_config(cls, config, probe: UPSProbe, fleet: FleetController,
                    store: StateStore, **kwargs) -> "PowerStateMachine":
        return cls(
            probe, fleet, store,
            battery_wait_time=config.battery_wait_time,
            power_restore_wait=config.power_restore_wait,
            min_battery_level=config.min_battery_level,
            critical_battery_level=config.critical_battery_level,
            poll_interval=config.poll_interval,
            restart_policy=config.restart_policy,
            **kwargs,
        )

    # -- Lifecycle --------------------------------------------------------

    @property
    def terminated(self) -> bool:
        """True once the UPS was commanded off; the loop will not resume."""
        return self._terminated

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def restore(self) -> StoredState:
        """Load the persisted state and rebuild the timers from it."""
        stored = self.store.load()

        if stored.ups_shutdown_issued and self.restart_policy == RESTART_RESET:
            logger.warning(
                "Previous run powered off the UPS from %s; restart policy 'reset' "
                "-> starting at NORMAL", stored.state.value,
            )
            self.store.clear()
            stored = StoredState(SupervisoryState.NORMAL, self._clock())
        elif stored.ups_shutdown_issued:
            logger.warning(
                "Previous run powered off the UPS; resuming %s (restart policy 'resume')",
                stored.state.value,
            )

        self.state = stored.state
        self.entered_at = stored.entered_at
        self.context = TransitionContext()
        if self.state == SupervisoryState.ON_BATTERY:
            self.context.battery_start = stored.entered_at
        elif self.state == SupervisoryState.CLIENTS_DOWN:
            self.context.shutdown_issued = True
        elif self.state == SupervisoryState.POWER_RESTORED:
            self.context.shutdown_issued = True
            self.context.restore_start = stored.entered_at

        if self.state != SupervisoryState.NORMAL:
            logger.warning("Resuming in state %s (entered %.0fs ago)",
                           self.state.value, self._clock() - self.entered_at)
        return stored

    def stop(self):
        """Request the loop to exit at the next poll boundary."""
        self._stop_event.set()

    async def run(self):
        """Poll the UPS until stopped or until the UPS has been powered off."""
        self._running = True
        self.restore()
        logger.info("UPS monitoring started (%d client(s), state %s)",
                    len(self.fleet.clients), self.state.value)

        while not self._stop_event.is_set() and not self._terminated:
            try:
                await self.poll_once()
            except Exception:
                self._poll_errors += 1
                if self._poll_errors <= 5 or self._poll_errors % 30 == 0:
                    logger.exception("Error in poll loop (error %d)", self._poll_errors)

            if self._terminated or self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        self._running = False
        logger.info("Control loop exited (state %s%s)", self.state.value,
                    ", UPS powered off" if self._terminated else "")

    # -- Polling ----------------------------------------------------------

    async def read(self) -> PowerReading:
        """Query the probe and build this cycle's reading."""
        now = self._clock()
        status = await self.probe.status()
        if status is None:
            return PowerReading.unreachable(timestamp=now)
        charge = await self.probe.battery_charge()
        return PowerReading.from_status(status, battery_percent=charge, timestamp=now)

    async def poll_once(self):
        reading = await self.read()
        self.last_reading = reading
        self._poll_count += 1
        self._notify_reading(reading)
        await self.step(reading)

    async def step(self, reading: PowerReading):
        """Evaluate one reading against the current state."""
        if not reading.reachable:
            self._comm_errors += 1
            if self._comm_errors <= 3 or self._comm_errors % 60 == 0:
                logger.error("Cannot communicate with UPS (%d consecutive polls)",
                             self._comm_errors)
            return
        if self._comm_errors:
            logger.info("UPS communication restored after %d failed poll(s)",
                        self._comm_errors)
            self._comm_errors = 0

        handler = {
            SupervisoryState.NORMAL: self._handle_normal,
            SupervisoryState.ON_BATTERY: self._handle_on_battery,
            SupervisoryState.CLIENTS_DOWN: self._handle_clients_down,
            SupervisoryState.POWER_RESTORED: self._handle_power_restored,
        }[self.state]
        await handler(reading, self._clock())

    # -- State handlers ---------------------------------------------------

    async def _handle_normal(self, reading: PowerReading, now: float):
        if reading.on_battery:
            self.context.battery_start = now
            self.context.shutdown_issued = False
            logger.warning("ALERT: Power failure detected - UPS on battery (charge %s)",
                           _fmt_pct(reading.battery_percent))
            self._transition(SupervisoryState.ON_BATTERY, now, "power failure")

    async def _handle_on_battery(self, reading: PowerReading, now: float):
        if reading.online and not reading.on_battery:
            elapsed = now - (self.context.battery_start or now)
            logger.info("Power restored before shutdown threshold (%.0fs on battery)", elapsed)
            self.context.battery_start = None
            self._transition(SupervisoryState.NORMAL, now, "power restored before threshold")
            return

        if reading.online:
            return
        if self.context.battery_start is None:
            self.context.battery_start = self.entered_at
        elapsed = now - self.context.battery_start
        if elapsed >= self.battery_wait_time and not self.context.shutdown_issued:
            logger.warning("Battery threshold reached (%.0fs >= %ds)",
                           elapsed, self.battery_wait_time)
            self.context.shutdown_issued = True
            results = await self.fleet.shutdown_all()
            failed = [r.client.name for r in results if not r.ok]
            details = f"{len(results) - len(failed)}/{len(results)} clients acknowledged"
            if failed:
                details += f"; failed: {', '.join(failed)}"
            self._transition(SupervisoryState.CLIENTS_DOWN, self._clock(), details)

    async def _handle_clients_down(self, reading: PowerReading, now: float):
        if reading.online and not reading.on_battery:
            self.context.restore_start = now
            logger.info("Power restored - monitoring stability for %ds...",
                        self.power_restore_wait)
            self._transition(SupervisoryState.POWER_RESTORED, now, "power restored")
            return

        if not reading.on_battery:
            return

        charge = reading.battery_percent
        if charge is None:
            self._log_wait("Battery charge unknown; not powering off the UPS")
            return
        if charge <= self.critical_battery_level:
            await self._power_off_ups(charge)
            return
        self._log_wait(
            f"Clients down, on battery at {charge:.0f}% "
            f"(UPS powers off at {self.critical_battery_level:.0f}%)"
        )

    async def _handle_power_restored(self, reading: PowerReading, now: float):
        if reading.on_battery or not reading.online:
            logger.warning("Power lost again - continuing to monitor")
            self.context.restore_start = None
            self._transition(SupervisoryState.CLIENTS_DOWN, now, "power lost during restore wait")
            return

        if self.context.restore_start is None:
            self.context.restore_start = self.entered_at
        stable = now - self.context.restore_start
        if stable < self.power_restore_wait:
            return

        charge = reading.battery_percent
        if charge is None or charge < self.min_battery_level:
            self._log_wait(
                f"Battery charge {_fmt_pct(charge)} below threshold "
                f"{self.min_battery_level:.0f}%"
            )
            return

        logger.info("Power stable for %.0fs, battery at %.0f%%", stable, charge)
        results = await self.fleet.wake_all()
        self.context = TransitionContext()
        sent = sum(1 for r in results if r.ok)
        self._transition(SupervisoryState.NORMAL, self._clock(),
                         f"wake sent to {sent}/{len(results)} clients")
        logger.info("Systems returning to NORMAL state")

    async def _power_off_ups(self, charge: float):
        logger.critical("Battery at %.0f%% (<= %.0f%%), shutting down UPS",
                        charge, self.critical_battery_level)
        # Keep CLIENTS_DOWN and its original timestamp; mark that the UPS went down.
        self._persist(self.state, self.entered_at, ups_shutdown_issued=True)
        self._terminated = True
        self._ups_shutdown_ok = await self.probe.shutdown_ups()
        if not self._ups_shutdown_ok:
            logger.error("UPS shutdown command failed")
        self._add_event("ups_shutdown", self.state, self.state,
                        f"battery {charge:.0f}%, command "
                        f"{'accepted' if self._ups_shutdown_ok else 'failed'}")

    # -- Transitions ------------------------------------------------------

    def _transition(self, new_state: SupervisoryState, now: float, details: str = ""):
        old_state = self.state
        self.state = new_state
        self.entered_at = now
        self._wait_polls = 0
        self._persist(new_state, now)
        logger.info("State %s -> %s%s", old_state.value, new_state.value,
                    f" ({details})" if details else "")
        self._add_event("transition", old_state, new_state, details)

    def _persist(self, state: SupervisoryState, entered_at: float,
                 ups_shutdown_issued: bool = False):
        try:
            self.store.save(state, entered_at, ups_shutdown_issued=ups_shutdown_issued)
        except OSError:
            # In-memory state still advances so no action is repeated.
            self._persist_errors += 1

    def _log_wait(self, message: str):
        self._wait_polls += 1
        if self._wait_polls == 1 or self._wait_polls % 12 == 0:
            logger.info(message)

    # -- Events / reporting -----------------------------------------------

    def _add_event(self, event_type: str, old: SupervisoryState,
                   new: SupervisoryState, details: str) -> dict[str, Any]:
        event = {
            "type": event_type,
            "from": old.value,
            "to": new.value,
            "details": details,
            "ts": self._clock(),
        }
        self._events.append(event)
        if len(self._events) > self._max_events:
            self._events = self._events[-self._max_events:]
        if self._on_event:
            try:
                self._on_event(event)
            except Exception:
                logger.exception("Event callback failed")
        return event

    def _notify_reading(self, reading: PowerReading):
        if self._on_reading:
            try:
                self._on_reading(reading)
            except Exception:
                logger.exception("Reading callback failed")

    def get_events(self) -> list[dict[str, Any]]:
        return list(reversed(self._events))

    def get_status(self) -> dict[str, Any]:
        """Return the supervisor's current view (exposed via API and MQTT)."""
        now = self._clock()
        return {
            "state": self.state.value,
            "entered_at": self.entered_at,
            "seconds_in_state": round(now - self.entered_at, 1),
            "context": self.context.to_dict(),
            "reading": self.last_reading.to_dict() if self.last_reading else None,
            "running": self._running,
            "terminated": self._terminated,
            "poll_count": self._poll_count,
            "poll_errors": self._poll_errors,
            "comm_errors": self._comm_errors,
            "persist_errors": self._persist_errors,
        }


def _fmt_pct(value: float | None) -> str:
    return f"{value:.0f}%" if value is not None else "unknown"
