"""Update notifications received over MQTT."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from urllib.parse import quote_plus, unquote_plus, urlsplit

import paho.mqtt.client as paho

log = logging.getLogger(__name__)

DEFAULT_PORT = 1883
CLIENT_ID = "sub"
# Retained messages arrive right after subscribing; give integration time first.
SUBSCRIBE_DELAY_SECONDS = 10.0
CONNECT_TIMEOUT_SECONDS = 3.0


def topic_for(namespace: str, update_information: str) -> str:
    """Topic that carries every message about update_information."""
    escaped = quote_plus(update_information)
    if not escaped:
        raise ValueError("empty update information")
    return f"{namespace}/{escaped}/#"


def parse_topic(namespace: str, topic: str) -> list[str] | None:
    """Split a topic below namespace into its parts; None if fewer than two."""
    parts = topic.replace(namespace + "/", "").split("/")
    if len(parts) < 2:
        return None
    return parts


@dataclass(frozen=True)
class VersionReport:
    """A version announced for some update information."""

    update_information: str
    version: str
    fstime: datetime | None
    topic: str


def _lookup(data: dict, name: str):
    for key, value in data.items():
        if key.lower() == name:
            return value
    return None


def _parse_time(value) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Fractional seconds beyond microseconds are not understood by fromisoformat.
    head, dot, rest = text.partition(".")
    if dot:
        digits = ""
        for char in rest:
            if not char.isdigit():
                break
            digits += char
        text = head + "." + (digits[:6].ljust(6, "0")) + rest[len(digits):]
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _new_client(client_id: str):
    version = getattr(paho, "CallbackAPIVersion", None)
    if version is not None:
        return paho.Client(version.VERSION2, client_id=client_id)
    return paho.Client(client_id=client_id)


class UpdateSubscriber:
    """Subscribes to version announcements for update information."""

    def __init__(
        self,
        server_uri: str,
        namespace: str,
        on_version: Callable[[VersionReport], object] | None = None,
    ):
        parts = urlsplit(server_uri)
        if not parts.hostname:
            raise ValueError(f"no host in MQTT server URI {server_uri!r}")
        self.host = parts.hostname
        self.port = parts.port or DEFAULT_PORT
        self.username = parts.username or ""
        self._password = parts.password or ""
        self.namespace = namespace
        self.on_version = on_version
        self.client = None
        self.subscribed: list[str] = []
        self._connected = threading.Event()

    def _on_connect(self, client, *args) -> None:
        self._connected.set()
        for update_information in list(self.subscribed):
            self._subscribe_now(topic_for(self.namespace, update_information))

    def _on_disconnect(self, client, *args) -> None:
        self._connected.clear()

    def _on_message(self, client, userdata, message) -> None:
        self.handle_message(message.topic, message.payload)

    def connect(self) -> bool:
        """Connect to the server; failures are logged, not raised."""
        client = _new_client(CLIENT_ID)
        if self.username:
            client.username_pw_set(self.username, self._password or None)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self.client = client
        try:
            client.connect(self.host, self.port)
            client.loop_start()
        except OSError as exc:
            log.error("MQTT: %s", exc)
            return False
        self._connected.wait(CONNECT_TIMEOUT_SECONDS)
        connected = self.is_connected()
        log.info("MQTT client connected: %s", connected)
        return connected

    def is_connected(self) -> bool:
        return self.client is not None and bool(self.client.is_connected())

    def ensure_connected(self) -> bool:
        """Reconnect if the connection was lost; return whether connected."""
        if self.client is None:
            return self.connect()
        if not self.is_connected():
            log.info("MQTT client connected: False")
            try:
                self.client.reconnect()
            except OSError as exc:
                log.error("MQTT: %s", exc)
            self._connected.wait(CONNECT_TIMEOUT_SECONDS)
            log.info("MQTT client connected: %s", self.is_connected())
        return self.is_connected()

    def _subscribe_now(self, topic: str) -> None:
        if self.client is not None:
            self.client.subscribe(topic, 0)

    def subscribe(self, update_information: str, delay: float = SUBSCRIBE_DELAY_SECONDS) -> bool:
        """Subscribe to announcements; False if already subscribed."""
        if update_information in self.subscribed:
            return False
        topic = topic_for(self.namespace, update_information)
        self.subscribed.append(update_information)
        log.info("Subscribing to updates for %s", update_information)
        if delay > 0:
            timer = threading.Timer(delay, self._subscribe_now, args=(topic,))
            timer.daemon = True
            timer.start()
        else:
            self._subscribe_now(topic)
        return True

    def unsubscribe(self, update_information: str) -> None:
        if not quote_plus(update_information):
            return
        if self.client is not None:
            self.client.unsubscribe(topic_for(self.namespace, update_information))

    def handle_message(self, topic: str, payload) -> VersionReport | None:
        """Turn a version message into a report and pass it to on_version."""
        parts = parse_topic(self.namespace, topic)
        log.info("mqtt: received: %s", parts)
        if parts is None or parts[1] != "version":
            return None
        try:
            data = json.loads(bytes(payload).decode("utf-8") if not isinstance(payload, str) else payload)
        except (ValueError, UnicodeDecodeError) as exc:
            log.error("mqtt unmarshal: %s", exc)
            return None
        if not isinstance(data, dict):
            return None
        version = _lookup(data, "version")
        if not isinstance(version, str) or not version:
            return None
        report = VersionReport(
            update_information=unquote_plus(parts[0]),
            version=version,
            fstime=_parse_time(_lookup(data, "fstime")),
            topic=topic,
        )
        log.info("mqtt: %s reports version %s", parts[0], version)
        if self.on_version is not None:
            self.on_version(report)
        return report