# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Tests for the fleet controller: parallel shutdown and spaced wake."""

import asyncio
import os
import sys
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "supervisor"))

from src.client_config import Client
from src.fleet import DispatchResult, FleetController


def make_clients(n=3):
    return tuple(
        Client(f"node{i}", f"10.0.0.{i}", f"aa:bb:cc:dd:ee:{i:02x}")
        for i in range(1, n + 1)
    )


def make_fleet(clients=None, shutdown=None, wake=None, **kwargs):
    sleep = AsyncMock()
    fleet = FleetController(
        clients if clients is not None else make_clients(),
        shutdown or AsyncMock(),
        wake or AsyncMock(),
        sleep=sleep,
        **kwargs,
    )
    return fleet, sleep


# ---------------------------------------------------------------------------
# shutdown_all
# ---------------------------------------------------------------------------

class TestShutdownAll:

    @pytest.mark.asyncio
    async def test_dispatches_every_client(self):
        shutdown = AsyncMock()
        fleet, _sleep = make_fleet(shutdown=shutdown)
        results = await fleet.shutdown_all()
        assert shutdown.await_count == 3
        assert all(r.ok for r in results)
        assert [r.client.name for r in results] == ["node1", "node2", "node3"]
        assert fleet.shutdown_calls == 1

    @pytest.mark.asyncio
    async def test_waits_grace_period_after_dispatch(self):
        fleet, sleep = make_fleet(shutdown_grace=300)
        await fleet.shutdown_all()
        sleep.assert_awaited_once_with(300)

    @pytest.mark.asyncio
    async def test_zero_grace_skips_sleep(self):
        fleet, sleep = make_fleet(shutdown_grace=0)
        await fleet.shutdown_all()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self):
        async def shutdown(client):
            if client.name == "node2":
                raise RuntimeError("ssh exited 255: Connection refused")

        fleet, sleep = make_fleet(shutdown=shutdown, shutdown_grace=300)
        results = await fleet.shutdown_all()

        by_name = {r.client.name: r for r in results}
        assert by_name["node1"].ok
        assert by_name["node3"].ok
        assert not by_name["node2"].ok
        assert "Connection refused" in by_name["node2"].error
        sleep.assert_awaited_once_with(300)

    @pytest.mark.asyncio
    async def test_runs_in_parallel(self):
        """All dispatches are in flight before any of them completes."""
        started = []
        gate = asyncio.Event()

        async def shutdown(client):
            started.append(client.name)
            await gate.wait()

        fleet, _sleep = make_fleet(shutdown=shutdown, shutdown_grace=0)
        task = asyncio.ensure_future(fleet.shutdown_all())
        for _ in range(10):
            await asyncio.sleep(0)
        assert sorted(started) == ["node1", "node2", "node3"]
        gate.set()
        results = await task
        assert all(r.ok for r in results)

    @pytest.mark.asyncio
    async def test_hung_client_times_out(self):
        async def shutdown(client):
            if client.name == "node1":
                await asyncio.sleep(60)

        fleet, _sleep = make_fleet(shutdown=shutdown, shutdown_timeout=0.05,
                                   shutdown_grace=0)
        results = await asyncio.wait_for(fleet.shutdown_all(), timeout=5)
        assert not results[0].ok
        assert "timed out" in results[0].error
        assert results[1].ok and results[2].ok

    @pytest.mark.asyncio
    async def test_empty_fleet(self):
        fleet, sleep = make_fleet(clients=(), shutdown_grace=10)
        results = await fleet.shutdown_all()
        assert results == []
        sleep.assert_awaited_once_with(10)

    @pytest.mark.asyncio
    async def test_results_kept_for_status(self):
        fleet, _sleep = make_fleet()
        await fleet.shutdown_all()
        status = fleet.get_status()
        assert status["shutdown_calls"] == 1
        assert len(status["last_shutdown"]) == 3
        assert status["last_shutdown"][0]["action"] == "shutdown"


# ---------------------------------------------------------------------------
# wake_all
# ---------------------------------------------------------------------------

class TestWakeAll:

    @pytest.mark.asyncio
    async def test_wakes_in_order(self):
        woken = []

        async def wake(client):
            woken.append(client.name)

        fleet, _sleep = make_fleet(wake=wake)
        results = await fleet.wake_all()
        assert woken == ["node1", "node2", "node3"]
        assert all(r.ok for r in results)
        assert fleet.wake_calls == 1

    @pytest.mark.asyncio
    async def test_spacing_between_sends_only(self):
        fleet, sleep = make_fleet(wake_spacing=1)
        await fleet.wake_all()
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1)

    @pytest.mark.asyncio
    async def test_wake_failure_continues(self):
        wake = AsyncMock(side_effect=[None, OSError("Network is unreachable"), None])
        fleet, _sleep = make_fleet(wake=wake)
        results = await fleet.wake_all()
        assert [r.ok for r in results] == [True, False, True]
        assert "unreachable" in results[1].error

    @pytest.mark.asyncio
    async def test_single_client_no_spacing(self):
        fleet, sleep = make_fleet(clients=make_clients(1), wake_spacing=1)
        await fleet.wake_all()
        sleep.assert_not_awaited()


class TestDispatchResult:

    def test_to_dict(self):
        client = Client("web1", "10.0.0.5", "aa:bb:cc:dd:ee:ff")
        d = DispatchResult(client, "wake", False, error="boom", duration=0.25, ts=5.0).to_dict()
        assert d == {
            "name": "web1",
            "address": "10.0.0.5",
            "action": "wake",
            "ok": False,
            "error": "boom",
            "duration_ms": 250.0,
            "ts": 5.0,
        }
