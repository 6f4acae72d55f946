"""Status constants and data models for a NUT- or UPS-MIB-monitored UPS."""

from dataclasses import dataclass, field

# NUT variable names (upsc)
NUT_VAR_STATUS = "ups.status"
NUT_VAR_CHARGE = "battery.charge"

# NUT ups.status tokens
STATUS_ONLINE = "OL"
STATUS_ON_BATTERY = "OB"
STATUS_LOW_BATTERY = "LB"

# Standard UPS-MIB (RFC 1628)
UPS_MIB_BASE = "1.3.6.1.2.1.33.1"
OID_SYS_UPTIME = "1.3.6.1.2.1.1.3.0"
OID_BATTERY_STATUS = f"{UPS_MIB_BASE}.2.1.0"             # 1=unknown,2=normal,3=low,4=depleted
OID_SECONDS_ON_BATTERY = f"{UPS_MIB_BASE}.2.2.0"
OID_ESTIMATED_CHARGE = f"{UPS_MIB_BASE}.2.4.0"           # percent
OID_OUTPUT_SOURCE = f"{UPS_MIB_BASE}.4.1.0"              # see OUTPUT_SOURCE_MAP
OID_SHUTDOWN_AFTER_DELAY = f"{UPS_MIB_BASE}.8.2.0"       # seconds, SET 0 = now

OUTPUT_SOURCE_NORMAL = 3
OUTPUT_SOURCE_BATTERY = 5
OUTPUT_SOURCE_MAP = {
    1: "other",
    2: "none",
    3: "normal",
    4: "bypass",
    5: "battery",
    6: "booster",
    7: "reducer",
}

BATTERY_STATUS_LOW = 3
BATTERY_STATUS_DEPLETED = 4


@dataclass(frozen=True)
class UPSStatus:
    """Parsed ``ups.status`` flags."""
    flags: frozenset[str] = field(default_factory=frozenset)

    @property
    def online(self) -> bool:
        return STATUS_ONLINE in self.flags

    @property
    def on_battery(self) -> bool:
        return STATUS_ON_BATTERY in self.flags

    @property
    def low_battery(self) -> bool:
        return STATUS_LOW_BATTERY in self.flags

    @property
    def raw(self) -> str:
        return " ".join(sorted(self.flags))


def parse_ups_status(text: str | None) -> UPSStatus | None:
    """Parse a NUT status string such as ``"OB DISCHRG LB"``.

    Returns None for empty output, which callers treat as unreachable.
    """
    if text is None:
        return None
    tokens = text.strip().upper().split()
    if not tokens:
        return None
    return UPSStatus(flags=frozenset(tokens))


def parse_battery_charge(text) -> float | None:
    """Parse a charge percentage, tolerating ``"87.5"``, ``"87 %"`` or ints."""
    if text is None:
        return None
    if isinstance(text, (int, float)):
        value = float(text)
    else:
        cleaned = str(text).strip().rstrip("%").strip()
        if not cleaned:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return None
    if value < 0 or value > 100:
        return None
    return value


@dataclass
class PowerReading:
    """One poll's view of the UPS. Recomputed every cycle, never persisted."""
    on_battery: bool = False
    online: bool = False
    battery_percent: float | None = None
    reachable: bool = True
    raw_status: str = ""
    low_battery: bool = False
    timestamp: float = 0.0

    @classmethod
    def unreachable(cls, timestamp: float = 0.0) -> "PowerReading":
        return cls(reachable=False, timestamp=timestamp)

    @classmethod
    def from_status(cls, status: UPSStatus, battery_percent: float | None = None,
                    timestamp: float = 0.0) -> "PowerReading":
        return cls(
            on_battery=status.on_battery,
            online=status.online,
            battery_percent=battery_percent,
            raw_status=status.raw,
            low_battery=status.low_battery,
            timestamp=timestamp,
        )

    def to_dict(self) -> dict:
        return {
            "on_battery": self.on_battery,
            "online": self.online,
            "battery_percent": self.battery_percent,
            "reachable": self.reachable,
            "status": self.raw_status,
            "low_battery": self.low_battery,
            "ts": self.timestamp,
        }
