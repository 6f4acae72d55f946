# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Entry point -- UPS power-event supervisor.

Architecture
------------
Supervisor         -- wires probe, fleet, state store and optional MQTT/web
                      services; runs startup checks; owns shutdown cleanup.
PowerStateMachine  -- the control loop (see state_machine.py).

Exit codes: 0 after a signal-driven stop or after the UPS was commanded
off, 1 on configuration or startup-check failure.
"""

__version__ = "1.0.0"

import asyncio
import logging
import shutil
import signal
import sys

from .client_config import Client, load_clients
from .config import Config, ConfigError
from .fleet import FleetController
from .mock_ups import MockUPS
from .mqtt_handler import MQTTHandler
from .nut_client import NUTProbe
from .snmp_probe import SNMPProbe
from .ssh_shutdown import SSHShutdown
from .state_machine import PowerStateMachine
from .state_store import StateStore, SupervisoryState
from .web import RingBufferHandler, WebServer
from .wol import make_wake_sender

logger = logging.getLogger("ups_supervisor")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


class StartupError(Exception):
    """Raised when a startup precondition fails."""


def create_probe(config: Config):
    """Return the UPS probe selected by UPS_PROBE (or the mock)."""
    if config.mock_mode:
        logger.info("Mock mode - using simulated UPS")
        return MockUPS(simulate=True)
    if config.probe_type == "snmp":
        return SNMPProbe(config)
    return NUTProbe(config)


async def _simulated_shutdown(client: Client) -> None:
    logger.info("[SIMULATION] Would shut down %s (%s)", client.name, client.address)


async def _simulated_wake(client: Client) -> None:
    logger.info("[SIMULATION] Would wake %s (%s)", client.name, client.hardware_address)


class Supervisor:
    """Top-level orchestrator for one UPS and one static fleet."""

    def __init__(self, config: Config, clients: tuple[Client, ...]):
        self.config = config
        self.clients = clients

        self.probe = create_probe(config)
        if config.mock_mode:
            self.shutdown_sender = _simulated_shutdown
            self.wake_sender = _simulated_wake
        else:
            self.shutdown_sender = SSHShutdown.from_config(config)
            self.wake_sender = make_wake_sender(config)

        self.fleet = FleetController(
            clients,
            self.shutdown_sender,
            self.wake_sender,
            shutdown_timeout=config.shutdown_timeout,
            shutdown_grace=config.shutdown_grace,
            wake_spacing=config.wake_spacing,
        )
        self.store = StateStore(config.state_file)
        self.mqtt = MQTTHandler(config) if config.mqtt_broker else None
        self.machine = PowerStateMachine.from_config(
            config, self.probe, self.fleet, self.store,
            on_event=self._handle_event,
            on_reading=self._handle_reading,
        )
        self.web = None
        if config.web_port:
            self.web = WebServer(
                config.web_port,
                machine=self.machine,
                fleet=self.fleet,
                probe=self.probe,
                mqtt=self.mqtt,
                config=config,
            )
            self.web.set_version(__version__)

        self._subsystem_errors: dict[str, int] = {"mqtt": 0}

    # -- Startup checks ---------------------------------------------------

    def required_commands(self) -> list[str]:
        cmds: list[str] = []
        for part in (self.probe, self.shutdown_sender, self.wake_sender):
            for cmd in getattr(part, "required_commands", []):
                if cmd not in cmds:
                    cmds.append(cmd)
        return cmds

    async def startup_checks(self):
        """Verify tools, UPS connectivity and the state path before looping."""
        missing = [cmd for cmd in self.required_commands() if shutil.which(cmd) is None]
        if missing:
            raise StartupError(f"Missing required commands: {' '.join(missing)}")

        if not await self.probe.ping():
            raise StartupError(
                f"Cannot connect to UPS {self.config.ups_name}; "
                "check the UPS monitoring service is running"
            )

        try:
            self.store.check_writable()
        except OSError as e:
            raise StartupError(f"Cannot write state file {self.store.path}: {e}")

        logger.info("Startup checks passed")

    # -- Subsystem callbacks ----------------------------------------------

    def _handle_reading(self, reading):
        if self.mqtt:
            self._safe_mqtt(self.mqtt.publish_reading, reading)

    def _handle_event(self, event: dict):
        if not self.mqtt:
            return
        self._safe_mqtt(self.mqtt.publish_event, event)
        self._safe_mqtt(self.mqtt.publish_state, self.machine.get_status())
        if event["type"] != "transition":
            return
        if event["to"] == SupervisoryState.CLIENTS_DOWN.value and event["from"] == \
                SupervisoryState.ON_BATTERY.value:
            self._safe_mqtt(self.mqtt.publish_fleet_results, "shutdown",
                            [r.to_dict() for r in self.fleet.last_shutdown])
        elif event["to"] == SupervisoryState.NORMAL.value and event["from"] == \
                SupervisoryState.POWER_RESTORED.value:
            self._safe_mqtt(self.mqtt.publish_fleet_results, "wake",
                            [r.to_dict() for r in self.fleet.last_wake])

    def _safe_mqtt(self, fn, *args):
        """Publish to MQTT, catching errors independently."""
        try:
            fn(*args)
        except Exception:
            self._subsystem_errors["mqtt"] += 1
            if self._subsystem_errors["mqtt"] <= 3:
                logger.exception("MQTT publish error")

    # -- Run / stop -------------------------------------------------------

    async def run(self):
        """Run startup checks, then the control loop until stop or UPS power-off."""
        await self.startup_checks()

        if self.mqtt:
            self.mqtt.connect()
        if self.web:
            try:
                await self.web.start()
            except OSError:
                logger.exception("Status API failed to start; continuing without it")
                self.web = None

        try:
            await self.machine.run()
        finally:
            await self._cleanup()

    def stop(self):
        self.machine.stop()

    async def _cleanup(self):
        if self.machine.terminated:
            # Keep the record so the restart policy can decide on next boot.
            logger.warning("UPS shutdown issued - exiting with state preserved")
        else:
            self.store.clear()

        if self.web:
            await self.web.stop()
        if self.mqtt:
            self.mqtt.disconnect()
        self.probe.close()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def setup_logging(config: Config) -> RingBufferHandler:
    """Configure root logging. Raises OSError if the log file is unwritable."""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=LOG_FORMAT,
    )
    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)

    # Ring buffer for the web log viewer
    log_buffer = RingBufferHandler(1000)
    log_buffer.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(log_buffer)
    return log_buffer


def main():
    try:
        config = Config()
        clients = load_clients(config.clients_file, config.clients_env)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Client configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        log_buffer = setup_logging(config)
    except OSError as e:
        print(f"ERROR: Cannot open log file {config.log_file}: {e}", file=sys.stderr)
        sys.exit(1)

    supervisor = Supervisor(config, clients)
    if supervisor.web:
        supervisor.web.set_log_buffer(log_buffer)

    loop = asyncio.new_event_loop()

    def _shutdown(sig, frame):
        logger.info("Received termination signal %s - shutting down", sig)
        loop.call_soon_threadsafe(supervisor.stop)

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    exit_code = 0
    try:
        loop.run_until_complete(supervisor.run())
    except StartupError as e:
        logger.error("Startup check failed: %s", e)
        exit_code = 1
    finally:
        loop.close()
        logger.info("Supervisor stopped.")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
