"""MQTT command/event channel for driving a SessionBridge from a remote host."""
from __future__ import annotations

import json
import logging
import random
import socket
import string
import threading
import time
from concurrent.futures import Future
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .bridge import SessionBridge
from .config import BridgeSettings
from .models import CommandOutcome, HostEvent

LOGGER = logging.getLogger(__name__)

INVALID_REQUEST = "INVALID_REQUEST"
BRIDGE_UNAVAILABLE = "BRIDGE_UNAVAILABLE"


def _default_client_id() -> str:
    hostname = socket.gethostname()
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"lock-bridge-{hostname}-{rand}"


class MqttHost:
    """Serve bridge commands from ``<prefix>/command`` and publish results/events.

    Requests are JSON objects ``{"id", "method", "arguments"}``. Every request
    produces one message on ``<prefix>/result``; host events go to
    ``<prefix>/event``.
    """

    def __init__(
        self,
        topic_prefix: str,
        host: str = "localhost",
        port: int = 1883,
        *,
        client: Optional[Any] = None,
        client_id: Optional[str] = None,
    ) -> None:
        prefix = topic_prefix.rstrip("/")
        self.host = host
        self.port = port
        self.command_topic = f"{prefix}/command"
        self.result_topic = f"{prefix}/result"
        self.event_topic = f"{prefix}/event"
        if client is None:
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id or _default_client_id(),
                clean_session=True,
            )
            client.enable_logger(LOGGER)
            client.reconnect_delay_set(min_delay=1, max_delay=30)
        self._client = client
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._bridge: Optional[SessionBridge] = None
        self._stop_event = threading.Event()

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "MqttHost":
        return cls(settings.topic_prefix, settings.mqtt_host, settings.mqtt_port)

    def attach(self, bridge: SessionBridge) -> None:
        self._bridge = bridge

    # Runtime ------------------------------------------------------------
    def run(self) -> None:
        LOGGER.info("Connecting to MQTT broker %s:%s", self.host, self.port)
        self._client.connect_async(self.host, self.port, keepalive=60)
        self._client.loop_forever(retry_first_connection=True)

    def stop(self) -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        LOGGER.info("Stopping MQTT host")
        self._client.disconnect()

    # Outbound -----------------------------------------------------------
    def publish_event(self, event: HostEvent) -> None:
        payload = event.export_dict()
        payload["timestamp"] = int(time.time() * 1000)
        self._publish(self.event_topic, payload)

    def publish_outcome(self, request_id: Any, outcome: CommandOutcome) -> None:
        payload = outcome.export_dict()
        payload["id"] = request_id
        payload["timestamp"] = int(time.time() * 1000)
        self._publish(self.result_topic, payload)

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        encoded = json.dumps(payload, ensure_ascii=False)
        LOGGER.debug("Publishing %s: %s", topic, encoded)
        self._client.publish(topic, encoded, qos=1)

    def _publish_error(self, request_id: Any, method: Any, code: str, message: str) -> None:
        self._publish(
            self.result_topic,
            {
                "id": request_id,
                "method": method,
                "success": False,
                "error": {"code": code, "message": message},
                "timestamp": int(time.time() * 1000),
            },
        )

    # Callbacks ----------------------------------------------------------
    def _on_connect(self, client: Any, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code == 0:
            LOGGER.info("MQTT connected; subscribing to %s", self.command_topic)
            client.subscribe(self.command_topic, qos=1)
        else:
            LOGGER.warning("MQTT connection refused: %s", reason_code)

    def _on_disconnect(
        self,
        client: Any,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if self._stop_event.is_set():
            return
        LOGGER.warning("Unexpected MQTT disconnect (%s); client will reconnect", reason_code)

    def _on_message(self, client: Any, userdata: Any, msg: "mqtt.MQTTMessage") -> None:
        try:
            data = json.loads(msg.payload.decode("utf-8"))
            if not isinstance(data, dict):
                raise ValueError("payload is not a JSON object")
        except (UnicodeDecodeError, ValueError) as exc:
            LOGGER.warning("Ignoring malformed command on %s: %s", msg.topic, exc)
            self._publish_error(None, None, INVALID_REQUEST, f"Malformed command payload: {exc}")
            return

        request_id = data.get("id")
        method = data.get("method")
        arguments = data.get("arguments") or {}
        if not isinstance(method, str) or not method:
            self._publish_error(request_id, method, INVALID_REQUEST, "Missing 'method'")
            return
        if not isinstance(arguments, dict):
            self._publish_error(request_id, method, INVALID_REQUEST, "'arguments' must be an object")
            return
        if self._bridge is None:
            self._publish_error(request_id, method, BRIDGE_UNAVAILABLE, "No bridge attached")
            return

        LOGGER.info("Command %s received (id=%s)", method, request_id)
        future = self._bridge.dispatch(method, arguments)

        def _on_done(done: "Future[CommandOutcome]") -> None:
            if done.cancelled():
                return
            self.publish_outcome(request_id, done.result())

        future.add_done_callback(_on_done)


__all__ = ["MqttHost"]
