# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Configuration from environment variables with validation.

Every threshold the state machine uses is a fixed value read once at
startup. Nothing here is reloaded at runtime.
"""

import logging
import os

logger = logging.getLogger(__name__)

VALID_PROBES = ("nut", "snmp")
VALID_WOL_METHODS = ("udp", "etherwake")
VALID_RESTART_POLICIES = ("resume", "reset")


class ConfigError(Exception):
    """Raised when configuration is invalid."""


class Config:
    def __init__(self):
        # UPS probe
        self.ups_name = os.environ.get("UPS_NAME", "nutdev1")
        self.probe_type = os.environ.get("UPS_PROBE", "nut").lower()
        self.snmp_host = os.environ.get("UPS_SNMP_HOST", "")
        self.snmp_port = self._int("UPS_SNMP_PORT", "161", 1, 65535)
        self.snmp_community_read = os.environ.get("UPS_SNMP_COMMUNITY_READ", "public")
        self.snmp_community_write = os.environ.get("UPS_SNMP_COMMUNITY_WRITE", "private")
        self.probe_timeout = self._float("UPS_PROBE_TIMEOUT", "5", 0.5, 60)
        self.ups_shutdown_command = os.environ.get(
            "UPS_SHUTDOWN_COMMAND", "upsdrvctl shutdown"
        )

        # Thresholds
        self.battery_wait_time = self._int("BATTERY_WAIT_TIME", "60", 0, 86400)
        self.power_restore_wait = self._int("POWER_RESTORE_WAIT", "600", 0, 86400)
        self.min_battery_level = self._float("MIN_BATTERY_LEVEL", "90", 0, 100)
        self.critical_battery_level = self._float("CRITICAL_BATTERY_LEVEL", "40", 0, 100)
        self.poll_interval = self._float("CHECK_INTERVAL", "5", 0.1, 300)

        # Fleet
        self.shutdown_grace = self._float("SHUTDOWN_GRACE", "300", 0, 3600)
        self.shutdown_timeout = self._float("SHUTDOWN_TIMEOUT", "30", 1, 600)
        self.wake_spacing = self._float("WAKE_SPACING", "1", 0, 60)
        self.ssh_user = os.environ.get("SSH_USER", "root")
        self.ssh_connect_timeout = self._int("SSH_CONNECT_TIMEOUT", "10", 1, 300)
        self.ssh_command = os.environ.get("SSH_COMMAND", "shutdown -h now")
        self.wol_method = os.environ.get("WOL_METHOD", "udp").lower()
        self.wol_broadcast = os.environ.get("WOL_BROADCAST", "255.255.255.255")
        self.wol_port = self._int("WOL_PORT", "9", 1, 65535)
        self.wol_interface = os.environ.get("WOL_INTERFACE", "")

        # Files
        self.clients_file = os.environ.get(
            "SUPERVISOR_CLIENTS_FILE", "/etc/ups_supervisor/clients.json"
        )
        self.clients_env = os.environ.get("SUPERVISOR_CLIENTS", "")
        self.state_file = os.environ.get(
            "SUPERVISOR_STATE_FILE", "/var/lib/ups_supervisor/state.json"
        )
        self.log_file = os.environ.get("SUPERVISOR_LOG_FILE", "/var/log/ups_supervisor.log")
        self.log_level = os.environ.get("SUPERVISOR_LOG_LEVEL", "INFO").upper()

        self.restart_policy = os.environ.get("SUPERVISOR_RESTART_POLICY", "resume").lower()
        self.supervisor_id = os.environ.get("SUPERVISOR_ID", "ups-supervisor")
        self.mock_mode = os.environ.get(
            "SUPERVISOR_MOCK_MODE", "false"
        ).lower() in ("true", "1", "yes")
        self.web_port = self._int("SUPERVISOR_WEB_PORT", "8080", 0, 65535)

        # MQTT (optional: empty broker disables publishing)
        self.mqtt_broker = os.environ.get("MQTT_BROKER", "")
        self.mqtt_port = self._int("MQTT_PORT", "1883", 1, 65535)
        self.mqtt_username = os.environ.get("MQTT_USERNAME", "")
        self.mqtt_password = os.environ.get("MQTT_PASSWORD", "")

        self._validate()
        self._log_config()

    @staticmethod
    def _int(env: str, default: str, min_val: int, max_val: int) -> int:
        raw = os.environ.get(env, default)
        try:
            val = int(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid integer")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _float(env: str, default: str, min_val: float, max_val: float) -> float:
        raw = os.environ.get(env, default)
        try:
            val = float(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid number")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    def _validate(self):
        if self.probe_type not in VALID_PROBES:
            raise ConfigError(
                f"UPS_PROBE must be one of {VALID_PROBES}, got {self.probe_type!r}"
            )
        if self.wol_method not in VALID_WOL_METHODS:
            raise ConfigError(
                f"WOL_METHOD must be one of {VALID_WOL_METHODS}, got {self.wol_method!r}"
            )
        if self.restart_policy not in VALID_RESTART_POLICIES:
            raise ConfigError(
                f"SUPERVISOR_RESTART_POLICY must be one of {VALID_RESTART_POLICIES}, "
                f"got {self.restart_policy!r}"
            )
        if self.min_battery_level <= self.critical_battery_level:
            raise ConfigError(
                f"MIN_BATTERY_LEVEL ({self.min_battery_level:g}) must be above "
                f"CRITICAL_BATTERY_LEVEL ({self.critical_battery_level:g})"
            )
        if self.probe_type == "snmp" and not self.snmp_host and not self.mock_mode:
            raise ConfigError("UPS_PROBE=snmp requires UPS_SNMP_HOST")
        if not self.ups_name:
            raise ConfigError("UPS_NAME must not be empty")
        # Validate supervisor_id has no MQTT-unsafe characters
        if not self.supervisor_id or any(c in self.supervisor_id for c in "/#+ "):
            raise ConfigError(
                f"SUPERVISOR_ID contains invalid characters: {self.supervisor_id!r}"
            )

    @property
    def settings_dict(self) -> dict:
        """Thresholds and timings, for the status API."""
        return {
            "ups_name": self.ups_name,
            "probe": "mock" if self.mock_mode else self.probe_type,
            "battery_wait_time": self.battery_wait_time,
            "power_restore_wait": self.power_restore_wait,
            "min_battery_level": self.min_battery_level,
            "critical_battery_level": self.critical_battery_level,
            "poll_interval": self.poll_interval,
            "shutdown_grace": self.shutdown_grace,
            "shutdown_timeout": self.shutdown_timeout,
            "wake_spacing": self.wake_spacing,
            "wol_method": self.wol_method,
            "restart_policy": self.restart_policy,
        }

    def _log_config(self):
        logger.info(
            "Config: ups=%s probe=%s mock=%s poll=%.1fs battery_wait=%ds "
            "restore_wait=%ds min_battery=%.0f%% critical=%.0f%%",
            self.ups_name, self.probe_type, self.mock_mode, self.poll_interval,
            self.battery_wait_time, self.power_restore_wait,
            self.min_battery_level, self.critical_battery_level,
        )
