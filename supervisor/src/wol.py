# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Wake-on-LAN senders.

Two ways to put a magic packet on the wire:
  udp        -> broadcast datagram (no extra tools, no root needed)
  etherwake  -> raw ethernet frame via the etherwake binary
"""

import asyncio
import logging
import socket

from .client_config import Client, normalize_mac
from .config import Config

logger = logging.getLogger(__name__)

ETHERWAKE = "etherwake"


def build_magic_packet(mac: str) -> bytes:
    """Six 0xFF bytes followed by the MAC repeated sixteen times."""
    raw = bytes.fromhex(normalize_mac(mac).replace(":", ""))
    return b"\xff" * 6 + raw * 16


class UDPWakeSender:
    """Broadcast the magic packet as a UDP datagram."""

    def __init__(self, broadcast: str = "255.255.255.255", port: int = 9):
        self._broadcast = broadcast
        self._port = port

    @property
    def required_commands(self) -> list[str]:
        return []

    async def __call__(self, client: Client) -> None:
        packet = build_magic_packet(client.hardware_address)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.sendto(packet, (self._broadcast, self._port))
        finally:
            sock.close()
        logger.debug("Magic packet for %s sent to %s:%d",
                     client.hardware_address, self._broadcast, self._port)


class EtherwakeSender:
    """Send the magic packet with the etherwake tool."""

    def __init__(self, interface: str = "", timeout: float = 5.0):
        self._interface = interface
        self._timeout = timeout

    @property
    def required_commands(self) -> list[str]:
        return [ETHERWAKE]

    def build_argv(self, client: Client) -> list[str]:
        argv = [ETHERWAKE]
        if self._interface:
            argv += ["-i", self._interface]
        argv.append(client.hardware_address)
        return argv

    async def __call__(self, client: Client) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self.build_argv(client),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RuntimeError(f"etherwake timed out after {self._timeout:g}s")
        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip() if stderr else ""
            raise RuntimeError(f"etherwake exited {proc.returncode}: {err}".rstrip(": "))


def make_wake_sender(config: Config):
    """Return the wake sender selected by WOL_METHOD."""
    if config.wol_method == "etherwake":
        return EtherwakeSender(interface=config.wol_interface)
    return UDPWakeSender(broadcast=config.wol_broadcast, port=config.wol_port)
