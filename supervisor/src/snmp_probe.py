# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""SNMP probe for UPSes that speak the standard UPS-MIB (RFC 1628).

Maps upsOutputSource / upsBatteryStatus onto the same OL/OB/LB flags the
NUT probe reports, so the state machine never knows which one it is using.
"""

import logging
import time
from typing import Any

from pysnmp.hlapi.asyncio import (
    CommunityData,
    ContextData,
    Integer32,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    getCmd,
    setCmd,
)

from .config import Config
from .ups_model import (
    BATTERY_STATUS_DEPLETED,
    BATTERY_STATUS_LOW,
    OID_BATTERY_STATUS,
    OID_ESTIMATED_CHARGE,
    OID_OUTPUT_SOURCE,
    OID_SHUTDOWN_AFTER_DELAY,
    OID_SYS_UPTIME,
    OUTPUT_SOURCE_BATTERY,
    OUTPUT_SOURCE_MAP,
    STATUS_LOW_BATTERY,
    STATUS_ON_BATTERY,
    STATUS_ONLINE,
    UPSStatus,
    parse_battery_charge,
)

logger = logging.getLogger(__name__)

# Output sources that mean mains power is present
_MAINS_SOURCES = frozenset({3, 4, 6, 7})


class SNMPProbe:
    """UPSProbe implementation backed by SNMP GET/SET against UPS-MIB."""

    def __init__(self, config: Config):
        self._host = config.snmp_host
        self._port = config.snmp_port

        self.engine = SnmpEngine()
        self._read_community = CommunityData(config.snmp_community_read)
        self._write_community = CommunityData(config.snmp_community_write)
        self._target = UdpTransportTarget(
            (self._host, self._port),
            timeout=config.probe_timeout,
            retries=1,
        )

        # Health tracking
        self._total_gets = 0
        self._failed_gets = 0
        self._consecutive_failures = 0
        self._last_success_time: float | None = None
        self._last_error_time: float | None = None
        self._last_error_msg: str | None = None

    @property
    def required_commands(self) -> list[str]:
        return []

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def get_health(self) -> dict:
        """Return SNMP connection health metrics."""
        return {
            "target": f"{self._host}:{self._port}",
            "probe": "snmp",
            "total_gets": self._total_gets,
            "failed_gets": self._failed_gets,
            "consecutive_failures": self._consecutive_failures,
            "last_success": self._last_success_time,
            "last_error": self._last_error_time,
            "last_error_msg": self._last_error_msg,
            "reachable": self._consecutive_failures == 0,
        }

    async def get(self, oid: str) -> Any | None:
        """SNMP GET a single OID. Returns the value or None on error."""
        self._total_gets += 1
        try:
            error_indication, error_status, error_index, var_binds = await getCmd(
                self.engine,
                self._read_community,
                self._target,
                ContextData(),
                ObjectType(ObjectIdentity(oid)),
            )

            if error_indication:
                self._record_failure(f"GET {oid}: {error_indication}")
                return None
            if error_status:
                self._record_failure(
                    f"GET {oid}: {error_status.prettyPrint()} at "
                    f"{var_binds[int(error_index) - 1][0] if error_index else '?'}"
                )
                return None

            _oid, value = var_binds[0]
            self._record_success()
            return value

        except Exception as e:
            self._record_failure(f"GET {oid}: {e}")
            return None

    async def set(self, oid: str, value: int) -> bool:
        """SNMP SET an integer value. Returns True on success."""
        try:
            error_indication, error_status, _error_index, _var_binds = await setCmd(
                self.engine,
                self._write_community,
                self._target,
                ContextData(),
                ObjectType(ObjectIdentity(oid), Integer32(value)),
            )
        except Exception as e:
            logger.error("SNMP SET %s=%d failed: %s", oid, value, e)
            return False
        if error_indication or error_status:
            logger.error("SNMP SET %s=%d failed: %s", oid, value,
                         error_indication or error_status.prettyPrint())
            return False
        return True

    async def status(self) -> UPSStatus | None:
        source = await self.get(OID_OUTPUT_SOURCE)
        if source is None:
            return None
        try:
            source = int(source)
        except (TypeError, ValueError):
            logger.warning("Unexpected upsOutputSource value: %r", source)
            return None

        flags = set()
        if source == OUTPUT_SOURCE_BATTERY:
            flags.add(STATUS_ON_BATTERY)
        elif source in _MAINS_SOURCES:
            flags.add(STATUS_ONLINE)
        else:
            flags.add(OUTPUT_SOURCE_MAP.get(source, "unknown").upper())

        battery_status = await self.get(OID_BATTERY_STATUS)
        try:
            if battery_status is not None and int(battery_status) in (
                BATTERY_STATUS_LOW, BATTERY_STATUS_DEPLETED,
            ):
                flags.add(STATUS_LOW_BATTERY)
        except (TypeError, ValueError):
            pass

        return UPSStatus(flags=frozenset(flags))

    async def battery_charge(self) -> float | None:
        value = await self.get(OID_ESTIMATED_CHARGE)
        if value is None:
            return None
        try:
            return parse_battery_charge(int(value))
        except (TypeError, ValueError):
            return None

    async def ping(self) -> bool:
        return await self.get(OID_SYS_UPTIME) is not None

    async def shutdown_ups(self) -> bool:
        logger.warning("Issuing UPS shutdown via SNMP upsShutdownAfterDelay=0 on %s",
                       self._host)
        return await self.set(OID_SHUTDOWN_AFTER_DELAY, 0)

    def _record_success(self):
        self._consecutive_failures = 0
        self._last_success_time = time.time()

    def _record_failure(self, msg: str):
        self._failed_gets += 1
        self._consecutive_failures += 1
        self._last_error_time = time.time()
        self._last_error_msg = msg
        if self._consecutive_failures == 1:
            logger.warning("SNMP: %s", msg)
        elif self._consecutive_failures <= 5:
            logger.error("SNMP: %s (failure %d)", msg, self._consecutive_failures)
        elif self._consecutive_failures % 30 == 0:
            logger.error(
                "SNMP: UPS unreachable for %d consecutive failures - %s",
                self._consecutive_failures, msg,
            )

    def close(self):
        try:
            self.engine.close_dispatcher()
        except Exception:
            logger.debug("Error closing SNMP engine", exc_info=True)
