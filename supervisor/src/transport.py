# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Abstract probe protocol for UPS communication.

Defines the UPSProbe interface that the NUT, SNMP and Mock probes all
implement. The state machine only ever talks to this protocol, so it
works with whichever monitoring subsystem is available.
"""

from typing import Protocol, runtime_checkable

from .ups_model import UPSStatus


@runtime_checkable
class UPSProbe(Protocol):
    """Protocol for UPS status probes.

    Implementations: NUTProbe, SNMPProbe, MockUPS.
    Query methods never raise; failures come back as None.
    """

    async def status(self) -> UPSStatus | None:
        """Query online/on-battery status. None means unreachable."""
        ...

    async def battery_charge(self) -> float | None:
        """Query battery charge in percent. None means unknown."""
        ...

    async def ping(self) -> bool:
        """Return True if the UPS answers at all."""
        ...

    async def shutdown_ups(self) -> bool:
        """Command the UPS itself to power off.

        Returns True if the command was accepted.
        """
        ...

    def get_health(self) -> dict:
        """Return probe health metrics."""
        ...

    @property
    def consecutive_failures(self) -> int:
        """Current consecutive failure count."""
        ...

    def close(self) -> None:
        """Release any resources held by the probe."""
        ...
