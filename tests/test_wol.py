# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Unit tests for Wake-on-LAN senders."""

import asyncio
import os
import socket
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "supervisor"))

from src.client_config import Client
from src.wol import EtherwakeSender, UDPWakeSender, build_magic_packet, make_wake_sender

CLIENT = Client("web1", "192.168.1.10", "aa:bb:cc:dd:ee:ff")


class TestMagicPacket:

    def test_layout(self):
        packet = build_magic_packet("AA:BB:CC:DD:EE:FF")
        assert len(packet) == 102
        assert packet[:6] == b"\xff" * 6
        assert packet[6:12] == bytes.fromhex("aabbccddeeff")
        assert packet[6:] == bytes.fromhex("aabbccddeeff") * 16

    def test_invalid_mac(self):
        with pytest.raises(ValueError):
            build_magic_packet("not-a-mac")


class TestUDPWakeSender:

    @pytest.mark.asyncio
    async def test_broadcasts_packet(self):
        sock = MagicMock()
        with patch("src.wol.socket.socket", return_value=sock):
            await UDPWakeSender("192.168.1.255", 7)(CLIENT)
        sock.setsockopt.assert_called_once_with(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.sendto.assert_called_once_with(
            build_magic_packet(CLIENT.hardware_address), ("192.168.1.255", 7)
        )
        sock.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_send_error_propagates_and_closes(self):
        sock = MagicMock()
        sock.sendto.side_effect = OSError("Network is unreachable")
        with patch("src.wol.socket.socket", return_value=sock):
            with pytest.raises(OSError):
                await UDPWakeSender()(CLIENT)
        sock.close.assert_called_once()


class TestEtherwakeSender:

    def test_argv_with_interface(self):
        assert EtherwakeSender("eth1").build_argv(CLIENT) == [
            "etherwake", "-i", "eth1", "aa:bb:cc:dd:ee:ff",
        ]

    def test_argv_without_interface(self):
        assert EtherwakeSender().build_argv(CLIENT) == ["etherwake", "aa:bb:cc:dd:ee:ff"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self):
        proc = MagicMock()
        proc.communicate = AsyncMock(return_value=(None, b"etherwake: socket: Operation not permitted"))
        proc.returncode = 1
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(RuntimeError, match="not permitted"):
                await EtherwakeSender()(CLIENT)

    @pytest.mark.asyncio
    async def test_timeout_kills(self):
        proc = MagicMock()
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError)
        proc.kill = MagicMock()
        proc.wait = AsyncMock()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(RuntimeError, match="timed out"):
                await EtherwakeSender(timeout=0.1)(CLIENT)
        proc.kill.assert_called_once()


class TestFactory:

    def test_udp_default(self):
        config = MagicMock(wol_method="udp", wol_broadcast="10.0.0.255", wol_port=9)
        assert isinstance(make_wake_sender(config), UDPWakeSender)

    def test_etherwake(self):
        config = MagicMock(wol_method="etherwake", wol_interface="eth0")
        sender = make_wake_sender(config)
        assert isinstance(sender, EtherwakeSender)
        assert sender.required_commands == ["etherwake"]
