"""
src/alert_transport.py

Alert Communication Layer for Sensor Nodes

Implements the path from a sensor alert to the outside world:
- AlertMessage: immutable alert value produced by a sensor node
- AlertChannel: in-process publish/subscribe channel (LoRa receiver emulation)
- HttpAlertTransport: fire-and-forget HTTP sink on a worker pool

Transport outcomes are only logged and counted; they never feed back
into simulation state.
"""

import json
import time
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import requests

from constants import (
    BACKEND_URL, TRANSPORT_TIMEOUT_S, TRANSPORT_MAX_WORKERS, ALERT_SOURCE_TAG
)

logger = logging.getLogger(__name__)

# ============================================================================
# ALERT MESSAGE
# ============================================================================

def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AlertMessage:
    """Alert emitted by a sensor node. Never mutated after creation."""
    sender_id: str              # Node UUID
    row: int                    # Node grid position
    col: int
    temperature: float          # °C
    co2_level: float            # ppm
    fire_detected: bool
    timestamp_ms: int = field(default_factory=_now_ms)

    def to_payload(self) -> dict:
        """Body sent to the alert backend."""
        return {
            "uuid": self.sender_id,
            "temperature": self.temperature,
            "co2_level": self.co2_level,
            "source": ALERT_SOURCE_TAG,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload())

    def to_dict(self) -> dict:
        """Full message for local consumers (API, websocket)."""
        return {
            "uuid": self.sender_id,
            "row": self.row,
            "col": self.col,
            "temperature": self.temperature,
            "co2_level": self.co2_level,
            "fire_detected": self.fire_detected,
            "timestamp_ms": self.timestamp_ms,
        }


AlertSubscriber = Callable[[AlertMessage], None]

# ============================================================================
# PUBLISH / SUBSCRIBE CHANNEL
# ============================================================================

class AlertChannel:
    """
    In-process alert channel.

    Created once per simulation and passed explicitly to publishers
    (sensor nodes) and observers (controller, transport, servers).
    A failing subscriber is logged and does not affect the others.

    Attributes:
        subscribers: Registered callbacks, in registration order
        messages_published: Count of published alerts
    """

    def __init__(self):
        """Initialize an open channel with no subscribers."""
        self.subscribers: List[AlertSubscriber] = []
        self.messages_published = 0
        self.closed = False
        self._lock = threading.Lock()

    def subscribe(self, callback: AlertSubscriber) -> None:
        """
        Register a subscriber.

        Args:
            callback: Called with each published AlertMessage
        """
        with self._lock:
            if callback not in self.subscribers:
                self.subscribers.append(callback)
        logger.debug(f"Alert channel subscriber added ({len(self.subscribers)} total)")

    def unsubscribe(self, callback: AlertSubscriber) -> None:
        """Remove a subscriber if registered."""
        with self._lock:
            if callback in self.subscribers:
                self.subscribers.remove(callback)

    def publish(self, message: AlertMessage) -> int:
        """
        Deliver a message to every subscriber.

        Args:
            message: Alert to deliver

        Returns:
            Number of subscribers that handled the message without error
        """
        if self.closed:
            logger.warning(f"Alert from {message.sender_id} dropped: channel closed")
            return 0

        with self._lock:
            subscribers = list(self.subscribers)
            self.messages_published += 1

        delivered = 0
        for callback in subscribers:
            try:
                callback(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Alert subscriber error: {e}")
        return delivered

    def close(self) -> None:
        """Close the channel and drop all subscribers."""
        with self._lock:
            self.subscribers.clear()
            self.closed = True
        logger.info("Alert channel closed")


# ============================================================================
# HTTP TRANSPORT
# ============================================================================

class HttpAlertTransport:
    """
    Outbound alert sink (HTTP POST to the alert backend).

    Each send is a detached task on a thread pool: the caller never waits,
    there is no retry, and the result is only logged and counted.

    Attributes:
        backend_url: Alert endpoint
        timeout_s: Per-request timeout
        sent_ok: Requests answered with a 2xx status
        sent_failed: Requests that errored or got a non-2xx status
    """

    def __init__(self, backend_url: str = BACKEND_URL,
                 timeout_s: float = TRANSPORT_TIMEOUT_S,
                 max_workers: int = TRANSPORT_MAX_WORKERS):
        """
        Initialize transport.

        Args:
            backend_url: Alert endpoint URL
            timeout_s: Request timeout (seconds)
            max_workers: Worker threads for concurrent sends
        """
        self.backend_url = backend_url
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="alert-tx"
        )
        self._channel: Optional[AlertChannel] = None
        self._stats_lock = threading.Lock()

        self.sent_ok = 0
        self.sent_failed = 0

        logger.info(f"HttpAlertTransport initialized: {backend_url}")

    @classmethod
    def from_config(cls, transport_config) -> "HttpAlertTransport":
        return cls(
            backend_url=transport_config.backend_url,
            timeout_s=transport_config.timeout_s,
            max_workers=transport_config.max_workers,
        )

    def attach(self, channel: AlertChannel) -> None:
        """Subscribe to an alert channel."""
        channel.subscribe(self.send)
        self._channel = channel

    def detach(self) -> None:
        """Unsubscribe from the attached channel."""
        if self._channel is not None:
            self._channel.unsubscribe(self.send)
            self._channel = None

    def send(self, message: AlertMessage) -> Optional[Future]:
        """
        Dispatch a message without blocking.

        Args:
            message: Alert to send

        Returns:
            Future of the HTTP status code (None on error), or None if the
            transport is shut down
        """
        payload = message.to_payload()
        try:
            return self._executor.submit(self._post, payload, message.sender_id)
        except RuntimeError:
            logger.warning(f"Transport shut down, alert from {message.sender_id} not sent")
            return None

    def _post(self, payload: dict, sender_id: str) -> Optional[int]:
        """Worker body: one POST, outcome logged and counted."""
        try:
            response = requests.post(self.backend_url, json=payload, timeout=self.timeout_s)
        except requests.RequestException as e:
            logger.error(f"Alert send failed for {sender_id}: {e}")
            self._count(ok=False)
            return None

        if response.ok:
            logger.info(f"Backend API response: {response.status_code} ({sender_id})")
            self._count(ok=True)
        else:
            logger.warning(f"Backend rejected alert from {sender_id}: HTTP {response.status_code}")
            self._count(ok=False)
        return response.status_code

    def _count(self, ok: bool) -> None:
        with self._stats_lock:
            if ok:
                self.sent_ok += 1
            else:
                self.sent_failed += 1

    def shutdown(self, wait: bool = True) -> None:
        """Detach and stop the worker pool."""
        self.detach()
        self._executor.shutdown(wait=wait)
        logger.info("HttpAlertTransport shut down")

    def get_metrics(self) -> Dict[str, int]:
        with self._stats_lock:
            return {
                "sent_ok": self.sent_ok,
                "sent_failed": self.sent_failed,
            }
