# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""MQTT publisher - supervisory state, UPS readings and transition events.

Topic hierarchy (``ups/{supervisor_id}/…``)::

    supervisor/status   online|offline (retained, LWT)
    state               current state JSON (retained)
    reading             latest PowerReading JSON (retained)
    event               transition events (QoS 1)
    fleet/{action}      shutdown/wake dispatch results (QoS 1)

Publishing is optional and never blocks the control loop: the paho network
loop runs in its own thread and failed publishes are only counted.
"""

import json
import logging
import time

import paho.mqtt.client as mqtt

from .config import Config
from .ups_model import PowerReading

logger = logging.getLogger(__name__)


class MQTTHandler:
    def __init__(self, config: Config):
        self.config = config
        self.supervisor_id = config.supervisor_id
        self.prefix = f"ups/{self.supervisor_id}"

        # Connection status tracking
        self._connected: bool = False
        self._reconnect_count: int = 0
        self._last_connect_time: float | None = None
        self._last_disconnect_time: float | None = None
        self._publish_errors: int = 0
        self._total_publishes: int = 0

        # Retained publishes queued while disconnected (max 100)
        self._pending_publishes: list[tuple[str, str, bool, int]] = []
        self._max_pending = 100

        self.client = mqtt.Client(
            client_id=f"ups-supervisor-{self.supervisor_id}",
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        self.client.will_set(
            f"{self.prefix}/supervisor/status", "offline", qos=1, retain=True
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        # Auto-reconnect with backoff
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self):
        logger.info("Connecting to MQTT broker %s:%d",
                    self.config.mqtt_broker, self.config.mqtt_port)

        if self.config.mqtt_username:
            self.client.username_pw_set(
                self.config.mqtt_username, self.config.mqtt_password
            )
            logger.info("MQTT authentication configured for user %s",
                        self.config.mqtt_username)

        try:
            self.client.connect(self.config.mqtt_broker, self.config.mqtt_port, keepalive=60)
            self.client.loop_start()
        except Exception:
            logger.exception("Failed to connect to MQTT broker")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        logger.info("MQTT connected (rc=%s)", reason_code)
        if self._last_connect_time is not None:
            self._reconnect_count += 1
            logger.info("MQTT reconnected (count=%d)", self._reconnect_count)
        self._connected = True
        self._last_connect_time = time.time()

        client.publish(f"{self.prefix}/supervisor/status", "online", qos=1, retain=True)

        # Drain pending publishes queued during disconnect
        if self._pending_publishes:
            drained = len(self._pending_publishes)
            for topic, payload, retain, qos in self._pending_publishes:
                try:
                    client.publish(topic, payload, qos=qos, retain=retain)
                except Exception:
                    logger.debug("Pending publish to %s failed", topic, exc_info=True)
            self._pending_publishes.clear()
            logger.info("Drained %d pending publishes after reconnect", drained)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning("MQTT disconnected (rc=%s)", reason_code)
        self._connected = False
        self._last_disconnect_time = time.time()

    def get_status(self) -> dict:
        """Return MQTT connection health info."""
        return {
            "connected": self._connected,
            "reconnect_count": self._reconnect_count,
            "last_connect": self._last_connect_time,
            "last_disconnect": self._last_disconnect_time,
            "broker": self.config.mqtt_broker,
            "port": self.config.mqtt_port,
            "publish_errors": self._publish_errors,
            "total_publishes": self._total_publishes,
        }

    def _publish(self, topic: str, payload, retain: bool = False, qos: int = 0):
        """Publish with error tracking. Queues retained messages on failure."""
        self._total_publishes += 1

        try:
            info = self.client.publish(topic, payload, qos=qos, retain=retain)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                self._publish_errors += 1
                if self._publish_errors % 100 == 1:
                    logger.warning("MQTT publish failed (rc=%s, topic=%s)", info.rc, topic)
                if retain and len(self._pending_publishes) < self._max_pending:
                    self._pending_publishes.append((topic, str(payload), retain, qos))
        except Exception:
            self._publish_errors += 1
            if self._publish_errors % 100 == 1:
                logger.exception("MQTT publish exception (topic=%s)", topic)
            if retain and len(self._pending_publishes) < self._max_pending:
                self._pending_publishes.append((topic, str(payload), retain, qos))

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish_state(self, status: dict):
        """Publish the state machine status (retained)."""
        self._publish(f"{self.prefix}/state", json.dumps(status), retain=True)

    def publish_reading(self, reading: PowerReading):
        """Publish the latest UPS reading (retained, every poll)."""
        self._publish(f"{self.prefix}/reading", json.dumps(reading.to_dict()), retain=True)

    def publish_event(self, event: dict):
        """Publish a single transition event (QoS 1, not retained)."""
        self._publish(f"{self.prefix}/event", json.dumps(event), qos=1)

    def publish_fleet_results(self, action: str, results: list[dict]):
        """Publish per-client dispatch results for a shutdown or wake cycle."""
        self._publish(
            f"{self.prefix}/fleet/{action}",
            json.dumps({"action": action, "results": results, "ts": time.time()}),
            qos=1,
        )

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    def disconnect(self):
        """Publish offline status and disconnect."""
        self._publish(f"{self.prefix}/supervisor/status", "offline", qos=1, retain=True)
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception:
            logger.debug("Error during MQTT disconnect", exc_info=True)
