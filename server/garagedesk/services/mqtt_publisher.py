"""
MQTT publisher for the live dashboard feed.
"""

import json
import logging
from typing import Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTPublisher:
    """Best-effort MQTT publisher. Publishing never raises."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        topic_prefix: str = "garagedesk/main",
        username: Optional[str] = None,
        password: Optional[str] = None
    ):
        self.host = host
        self.port = port
        self.topic_prefix = topic_prefix.rstrip('/')

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id="garagedesk-server")
        self.connected = False

        # Set up callbacks
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if username and password:
            self.client.username_pw_set(username, password)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Handle connection event."""
        if reason_code == 0:
            self.connected = True
            logger.info(f"Connected to MQTT broker at {self.host}")
        else:
            logger.error(f"MQTT connection failed with code {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        """Handle disconnection event."""
        self.connected = False
        logger.warning(f"Disconnected from MQTT broker (rc={reason_code})")

    def connect(self) -> bool:
        """Connect to MQTT broker."""
        try:
            self.client.connect(self.host, self.port, keepalive=60)
            self.client.loop_start()
            return True
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def _publish(self, topic: str, payload: dict, qos: int = 0):
        try:
            self.client.publish(f"{self.topic_prefix}/{topic}", json.dumps(payload, default=str), qos=qos)
        except Exception as e:
            logger.warning(f"MQTT publish to {topic} failed: {e}")

    def publish_space_state(self, event: dict):
        """Publish a space state change."""
        self._publish(f"space/{event['space_number']}/state", event, qos=1)
        logger.debug(f"Published space state: {event['space_number']} -> {event['state']}")

    def publish_summary(self, summary: dict):
        """Publish occupancy summary."""
        self._publish("summary", summary)

    def publish_shift_status(self, status: dict):
        self._publish(f"shift/{status['operator_id']}", status, qos=1)

    def publish_alert(self, alert: dict):
        """Publish an administrator alert."""
        self._publish(f"alert/{alert.get('type', 'general')}", alert, qos=1)

    def disconnect(self):
        """Disconnect from broker."""
        self.client.loop_stop()
        self.client.disconnect()
        logger.info("MQTT publisher disconnected")
