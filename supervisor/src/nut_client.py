# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""NUT probe - queries the UPS through ``upsc`` with health tracking.

Every query runs ``upsc`` as a subprocess bounded by the probe timeout.
Failures are counted and returned as None; nothing raises to the caller.
"""

import asyncio
import logging
import shlex
import time

from .config import Config
from .ups_model import (
    NUT_VAR_CHARGE,
    NUT_VAR_STATUS,
    UPSStatus,
    parse_battery_charge,
    parse_ups_status,
)

logger = logging.getLogger(__name__)

UPSC = "upsc"


class NUTProbe:
    """UPSProbe implementation backed by Network UPS Tools."""

    def __init__(self, config: Config):
        self._ups_name = config.ups_name
        self._timeout = config.probe_timeout
        self._shutdown_argv = shlex.split(config.ups_shutdown_command)

        # Health tracking
        self._total_queries = 0
        self._failed_queries = 0
        self._consecutive_failures = 0
        self._last_success_time: float | None = None
        self._last_error_time: float | None = None
        self._last_error_msg: str | None = None

    @property
    def required_commands(self) -> list[str]:
        """Executables that must be on PATH for this probe to work."""
        cmds = [UPSC]
        if self._shutdown_argv:
            cmds.append(self._shutdown_argv[0])
        return cmds

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def get_health(self) -> dict:
        """Return NUT query health metrics."""
        return {
            "target": self._ups_name,
            "probe": "nut",
            "total_queries": self._total_queries,
            "failed_queries": self._failed_queries,
            "consecutive_failures": self._consecutive_failures,
            "last_success": self._last_success_time,
            "last_error": self._last_error_time,
            "last_error_msg": self._last_error_msg,
            "reachable": self._consecutive_failures == 0,
        }

    async def _run(self, *argv: str) -> tuple[int, str] | None:
        """Run a command, returning (returncode, stdout) or None on timeout/OSError."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._record_failure(f"{argv[0]}: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            self._record_failure(f"{' '.join(argv)}: timed out after {self._timeout:g}s")
            return None

        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip() if stderr else ""
            self._record_failure(f"{' '.join(argv)}: exit {proc.returncode} {err}".strip())
            return proc.returncode, ""
        return proc.returncode, stdout.decode(errors="replace")

    async def query(self, variable: str) -> str | None:
        """Fetch a single NUT variable. Returns the raw value or None."""
        self._total_queries += 1
        result = await self._run(UPSC, self._ups_name, variable)
        if result is None or result[0] != 0:
            return None
        value = result[1].strip()
        if not value:
            self._record_failure(f"upsc {self._ups_name} {variable}: empty output")
            return None
        self._record_success()
        return value

    async def status(self) -> UPSStatus | None:
        return parse_ups_status(await self.query(NUT_VAR_STATUS))

    async def battery_charge(self) -> float | None:
        raw = await self.query(NUT_VAR_CHARGE)
        charge = parse_battery_charge(raw)
        if raw is not None and charge is None:
            logger.warning("Unparseable %s value from %s: %r",
                           NUT_VAR_CHARGE, self._ups_name, raw)
        return charge

    async def ping(self) -> bool:
        self._total_queries += 1
        result = await self._run(UPSC, self._ups_name)
        if result is None or result[0] != 0:
            return False
        self._record_success()
        return True

    async def shutdown_ups(self) -> bool:
        if not self._shutdown_argv:
            logger.error("No UPS shutdown command configured")
            return False
        logger.warning("Issuing UPS shutdown: %s", " ".join(self._shutdown_argv))
        result = await self._run(*self._shutdown_argv)
        return result is not None and result[0] == 0

    def _record_success(self):
        self._consecutive_failures = 0
        self._last_success_time = time.time()

    def _record_failure(self, msg: str):
        self._failed_queries += 1
        self._consecutive_failures += 1
        self._last_error_time = time.time()
        self._last_error_msg = msg
        if self._consecutive_failures <= 3 or self._consecutive_failures % 60 == 0:
            logger.warning("NUT query failed (%d consecutive): %s",
                           self._consecutive_failures, msg)

    def close(self) -> None:
        pass
