# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Unit tests for the UPS-MIB SNMP probe with mocked pysnmp calls."""

import os
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "supervisor"))

from src.snmp_probe import SNMPProbe
from src.ups_model import (
    OID_BATTERY_STATUS,
    OID_ESTIMATED_CHARGE,
    OID_OUTPUT_SOURCE,
    OID_SHUTDOWN_AFTER_DELAY,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def make_config():
    config = MagicMock()
    config.snmp_host = "127.0.0.1"
    config.snmp_port = 161
    config.snmp_community_read = "public"
    config.snmp_community_write = "private"
    config.probe_timeout = 1.0
    return config


@pytest.fixture()
def probe():
    return SNMPProbe(make_config())


def _make_var_bind(oid_str="1.3.6.1", value=42):
    """Create a (oid, value) var-bind tuple mimicking pysnmp output."""
    oid_obj = MagicMock()
    oid_obj.__str__ = lambda self: oid_str
    return (oid_obj, value)


def mib_responder(values: dict):
    """Return a getCmd replacement answering from a {oid: value} dict."""
    async def fake_get(engine, community, target, context, obj_type):
        oid = obj_type.oid
        if oid not in values:
            return ("requestTimedOut", None, 0, [])
        return (None, None, 0, [_make_var_bind(oid, values[oid])])
    return fake_get


class FakeObjectType:
    def __init__(self, identity, value=None):
        self.oid = identity.oid
        self.value = value


class FakeObjectIdentity:
    def __init__(self, oid):
        self.oid = oid


def patch_mib(values):
    return (
        patch("src.snmp_probe.getCmd", side_effect=mib_responder(values)),
        patch("src.snmp_probe.ObjectType", FakeObjectType),
        patch("src.snmp_probe.ObjectIdentity", FakeObjectIdentity),
    )


async def status_for(probe, values):
    p1, p2, p3 = patch_mib(values)
    with p1, p2, p3:
        return await probe.status()


# ---------------------------------------------------------------------------
# GET
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_success(probe):
    mock_result = (None, None, 0, [_make_var_bind(OID_ESTIMATED_CHARGE, 88)])
    with patch("src.snmp_probe.getCmd", new_callable=AsyncMock, return_value=mock_result):
        assert await probe.get(OID_ESTIMATED_CHARGE) == 88
    assert probe.consecutive_failures == 0


@pytest.mark.asyncio
async def test_get_error_indication(probe):
    with patch("src.snmp_probe.getCmd", new_callable=AsyncMock,
               return_value=("requestTimedOut", None, 0, [])):
        assert await probe.get(OID_ESTIMATED_CHARGE) is None
    assert probe.consecutive_failures == 1
    assert "requestTimedOut" in probe.get_health()["last_error_msg"]


@pytest.mark.asyncio
async def test_get_exception(probe):
    with patch("src.snmp_probe.getCmd", new_callable=AsyncMock,
               side_effect=OSError("socket error")):
        assert await probe.get(OID_ESTIMATED_CHARGE) is None
    assert probe.get_health()["failed_gets"] == 1


# ---------------------------------------------------------------------------
# Status mapping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_status_on_mains(probe):
    status = await status_for(probe, {OID_OUTPUT_SOURCE: 3, OID_BATTERY_STATUS: 2})
    assert status.online and not status.on_battery


@pytest.mark.asyncio
async def test_status_on_battery(probe):
    status = await status_for(probe, {OID_OUTPUT_SOURCE: 5, OID_BATTERY_STATUS: 2})
    assert status.on_battery and not status.online
    assert not status.low_battery


@pytest.mark.asyncio
async def test_status_battery_low(probe):
    status = await status_for(probe, {OID_OUTPUT_SOURCE: 5, OID_BATTERY_STATUS: 3})
    assert status.on_battery and status.low_battery


@pytest.mark.asyncio
async def test_status_bypass_counts_as_mains(probe):
    status = await status_for(probe, {OID_OUTPUT_SOURCE: 4})
    assert status.online


@pytest.mark.asyncio
async def test_status_output_off_is_neither(probe):
    status = await status_for(probe, {OID_OUTPUT_SOURCE: 2})
    assert not status.online and not status.on_battery
    assert status.raw == "NONE"


@pytest.mark.asyncio
async def test_status_unreachable(probe):
    assert await status_for(probe, {}) is None


@pytest.mark.asyncio
async def test_battery_charge(probe):
    p1, p2, p3 = patch_mib({OID_ESTIMATED_CHARGE: 64})
    with p1, p2, p3:
        assert await probe.battery_charge() == 64.0


# ---------------------------------------------------------------------------
# SET (UPS shutdown)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_shutdown_sets_delay_zero(probe):
    with patch("src.snmp_probe.setCmd", new_callable=AsyncMock,
               return_value=(None, None, 0, [])) as mock_set, \
            patch("src.snmp_probe.ObjectType", FakeObjectType), \
            patch("src.snmp_probe.ObjectIdentity", FakeObjectIdentity):
        assert await probe.shutdown_ups() is True
    obj = mock_set.await_args.args[4]
    assert obj.oid == OID_SHUTDOWN_AFTER_DELAY
    assert int(obj.value) == 0


@pytest.mark.asyncio
async def test_shutdown_rejected(probe):
    error_status = MagicMock()
    error_status.prettyPrint.return_value = "noAccess"
    error_status.__bool__ = lambda self: True
    with patch("src.snmp_probe.setCmd", new_callable=AsyncMock,
               return_value=(None, error_status, 1, [])):
        assert await probe.shutdown_ups() is False


def test_no_required_commands(probe):
    assert probe.required_commands == []
