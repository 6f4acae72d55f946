# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Client fleet controller - parallel shutdown fan-out, sequential wake.

Both operations are best-effort: a client that cannot be reached is logged
and left for the UPS to cut power to later. Neither operation ever raises
because of a single client.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .client_config import Client

logger = logging.getLogger(__name__)

Dispatcher = Callable[[Client], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass
class DispatchResult:
    client: Client
    action: str                 # "shutdown" or "wake"
    ok: bool
    error: str | None = None
    duration: float = 0.0
    ts: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.client.name,
            "address": self.client.address,
            "action": self.action,
            "ok": self.ok,
            "error": self.error,
            "duration_ms": round(self.duration * 1000, 1),
            "ts": self.ts,
        }


class FleetController:
    def __init__(self, clients: tuple[Client, ...], shutdown: Dispatcher,
                 wake: Dispatcher, *, shutdown_timeout: float = 30.0,
                 shutdown_grace: float = 300.0, wake_spacing: float = 1.0,
                 sleep: Sleeper = asyncio.sleep):
        self._clients = tuple(clients)
        self._shutdown = shutdown
        self._wake = wake
        self._shutdown_timeout = shutdown_timeout
        self._shutdown_grace = shutdown_grace
        self._wake_spacing = wake_spacing
        self._sleep = sleep

        self.last_shutdown: list[DispatchResult] = []
        self.last_wake: list[DispatchResult] = []
        self.shutdown_calls = 0
        self.wake_calls = 0

    @property
    def clients(self) -> tuple[Client, ...]:
        return self._clients

    async def _dispatch_shutdown(self, client: Client) -> DispatchResult:
        logger.info("Starting shutdown for %s (%s)", client.name, client.address)
        start = time.monotonic()
        try:
            await asyncio.wait_for(self._shutdown(client), timeout=self._shutdown_timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {self._shutdown_timeout:g}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            logger.info("Shutdown command sent to %s", client.name)
            return DispatchResult(client, "shutdown", True,
                                  duration=time.monotonic() - start, ts=time.time())

        logger.warning("Failed to send shutdown command to %s (%s): %s",
                       client.name, client.address, error)
        return DispatchResult(client, "shutdown", False, error=error,
                              duration=time.monotonic() - start, ts=time.time())

    async def shutdown_all(self) -> list[DispatchResult]:
        """Shut down every client in parallel, then wait out the grace period.

        The grace sleep is not interrupted by a stop request; the caller
        only proceeds once the fleet had time to halt.
        """
        self.shutdown_calls += 1
        logger.warning("Shutting down %d client machine(s)...", len(self._clients))

        outcomes = await asyncio.gather(
            *(self._dispatch_shutdown(c) for c in self._clients),
            return_exceptions=True,
        )
        results = []
        for client, outcome in zip(self._clients, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Shutdown dispatch for %s raised: %r", client.name, outcome)
                outcome = DispatchResult(client, "shutdown", False,
                                         error=repr(outcome), ts=time.time())
            results.append(outcome)
        self.last_shutdown = results

        ok = sum(1 for r in results if r.ok)
        logger.info("Shutdown dispatched: %d ok, %d failed", ok, len(results) - ok)

        if self._shutdown_grace > 0:
            logger.info("Waiting %.0fs for clients to complete shutdown...",
                        self._shutdown_grace)
            await self._sleep(self._shutdown_grace)
        return results

    async def wake_all(self) -> list[DispatchResult]:
        """Send one wake signal per client, spaced out, without waiting for acks."""
        self.wake_calls += 1
        logger.info("Waking up %d client machine(s)...", len(self._clients))

        results = []
        for i, client in enumerate(self._clients):
            if i > 0 and self._wake_spacing > 0:
                await self._sleep(self._wake_spacing)
            logger.info("Sending Wake-on-LAN to %s (%s)", client.name, client.hardware_address)
            start = time.monotonic()
            try:
                await self._wake(client)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.warning("Wake-on-LAN to %s (%s) failed: %s",
                               client.name, client.hardware_address, error)
                results.append(DispatchResult(client, "wake", False, error=error,
                                              duration=time.monotonic() - start,
                                              ts=time.time()))
            else:
                results.append(DispatchResult(client, "wake", True,
                                              duration=time.monotonic() - start,
                                              ts=time.time()))
        self.last_wake = results
        return results

    def get_status(self) -> dict[str, Any]:
        return {
            "clients": [c.to_dict() for c in self._clients],
            "shutdown_calls": self.shutdown_calls,
            "wake_calls": self.wake_calls,
            "last_shutdown": [r.to_dict() for r in self.last_shutdown],
            "last_wake": [r.to_dict() for r in self.last_wake],
        }
