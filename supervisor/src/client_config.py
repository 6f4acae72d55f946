# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Client fleet configuration - static list from a JSON file or env var.

The fleet is loaded once at startup and returned as a tuple; there is no
way to add or remove a client while the supervisor runs.
"""

import ipaddress
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CLIENTS_FILE = "/etc/ups_supervisor/clients.json"

_MAC_RE = re.compile(r"^[0-9a-fA-F]{2}([:-][0-9a-fA-F]{2}){5}$")
_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.-]{0,251}[A-Za-z0-9])?$")


def normalize_mac(mac: str) -> str:
    """Return a MAC as lower-case colon-separated octets.

    Raises ValueError for anything that is not six hex octets.
    """
    mac = mac.strip()
    if not _MAC_RE.match(mac):
        raise ValueError(f"Invalid hardware address: {mac!r}")
    return mac.replace("-", ":").lower()


@dataclass(frozen=True)
class Client:
    """A managed client machine."""
    name: str                   # Human-friendly hostname, used in logs
    address: str                # IP or hostname reachable over SSH; unique key
    hardware_address: str       # MAC for Wake-on-LAN

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "hardware_address": self.hardware_address,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Client":
        address = d["address"]
        if not isinstance(address, str) or not address.strip():
            raise ValueError(f"Client address must be a non-empty string, got {address!r}")
        address = address.strip()
        name = d.get("name")
        if name is not None and not isinstance(name, str):
            raise ValueError(f"Client {address!r} name must be a string, got {name!r}")
        mac = d.get("hardware_address") or d.get("mac", "")
        return cls(
            name=(name or address).strip(),
            address=address,
            hardware_address=normalize_mac(str(mac)),
        )

    def validate(self):
        if not self.name:
            raise ValueError(f"Client {self.address!r} has no name")
        try:
            ipaddress.ip_address(self.address)
        except ValueError:
            if not _HOSTNAME_RE.match(self.address):
                raise ValueError(
                    f"Client {self.name!r} address is not an IP or hostname: {self.address!r}"
                )
        normalize_mac(self.hardware_address)


def parse_client_entry(entry: str) -> Client:
    """Parse one ``name:address:mac`` entry.

    The MAC itself contains colons, so only the first two separators split.
    """
    parts = entry.strip().split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Client entry must be name:address:mac, got {entry!r}")
    name, address, mac = (p.strip() for p in parts)
    return Client(name=name, address=address, hardware_address=normalize_mac(mac))


def _check_unique(clients: list[Client]):
    seen: set[str] = set()
    for c in clients:
        if c.address in seen:
            raise ValueError(f"Duplicate client address: {c.address!r}")
        seen.add(c.address)


def load_clients(clients_file: str = DEFAULT_CLIENTS_FILE,
                 env_clients: str = "") -> tuple[Client, ...]:
    """Load the fleet.

    Priority:
    1. clients.json file if it exists (``{"clients": [{...}, ...]}``)
    2. ``SUPERVISOR_CLIENTS`` env var (``name:ip:mac,name:ip:mac``)

    An empty fleet is allowed (the supervisor still powers off the UPS);
    an invalid entry raises ValueError.
    """
    path = Path(clients_file)
    clients: list[Client] = []

    if path.exists():
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"{path} is not valid JSON: {e}")
        entries = data.get("clients", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise ValueError(f"{path} must hold a list of clients")
        for d in entries:
            if not isinstance(d, dict):
                raise ValueError(f"Client entry in {path} is not an object: {d!r}")
            try:
                client = Client.from_dict(d)
            except KeyError as e:
                raise ValueError(f"Client entry in {path} missing field {e}")
            client.validate()
            clients.append(client)
        source = str(path)
    elif env_clients.strip():
        for entry in env_clients.split(","):
            if not entry.strip():
                continue
            client = parse_client_entry(entry)
            client.validate()
            clients.append(client)
        source = "SUPERVISOR_CLIENTS"
    else:
        source = "nowhere"

    _check_unique(clients)
    if clients:
        logger.info("Loaded %d client(s) from %s: %s", len(clients), source,
                    ", ".join(c.name for c in clients))
    else:
        logger.warning("No clients configured (looked in %s and SUPERVISOR_CLIENTS)",
                       clients_file)
    return tuple(clients)
