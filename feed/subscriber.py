"""MQTT subscription lifecycle with an explicit reconnect policy."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, Optional, Union
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}
_WEBSOCKET_SCHEMES = {"ws", "wss"}
_TLS_SCHEMES = {"mqtts", "ssl", "wss"}


class FeedDisconnectedError(ConnectionError):
    """Raised from a subscription once the reconnect policy gives up."""


class FeedState(str, Enum):
    """Connection lifecycle states of a feed subscriber."""

    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    subscribed = "subscribed"
    shutting_down = "shutting_down"


@dataclass(frozen=True)
class FeedConfig:
    broker_url: str
    client_id: str
    topic: str
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 60
    queue_size: int = 1000
    enqueue_timeout: float = 1.0

    @property
    def scheme(self) -> str:
        return urlparse(self.broker_url).scheme.lower() or "mqtt"

    @property
    def host(self) -> str:
        host = urlparse(self.broker_url).hostname
        if not host:
            raise ValueError(f"Broker URL {self.broker_url!r} has no host.")
        return host

    @property
    def port(self) -> int:
        port = urlparse(self.broker_url).port
        if port is not None:
            return port
        try:
            return _DEFAULT_PORTS[self.scheme]
        except KeyError as exc:
            raise ValueError(f"Unsupported broker URL scheme {self.scheme!r}.") from exc

    @property
    def websocket_path(self) -> Optional[str]:
        if self.scheme not in _WEBSOCKET_SCHEMES:
            return None
        return urlparse(self.broker_url).path or "/mqtt"

    @property
    def use_tls(self) -> bool:
        return self.scheme in _TLS_SCHEMES


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff; ``max_attempts=None`` retries forever."""

    initial_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    max_attempts: Optional[int] = None

    def delay_for(self, attempt: int) -> Optional[float]:
        """Delay before reconnect ``attempt`` (1-based), or None to give up."""
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        delay = self.initial_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class FeedMessage:
    topic: str
    payload: bytes


@dataclass(frozen=True)
class _EndOfStream:
    error: Optional[Exception] = None


_QueueItem = Union[FeedMessage, _EndOfStream]


def build_paho_client(config: FeedConfig) -> mqtt.Client:
    """Create a paho client for the broker described by ``config``."""
    transport = "websockets" if config.websocket_path else "tcp"
    client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=config.client_id,
        transport=transport,
        reconnect_on_failure=False,
    )
    if config.username:
        client.username_pw_set(config.username, config.password)
    if config.use_tls:
        client.tls_set()
    if config.websocket_path:
        client.ws_set_options(path=config.websocket_path)
    return client


class Subscription:
    """Lazy, non-restartable stream of messages for the configured topic."""

    def __init__(self, subscriber: "FeedSubscriber", maxsize: int) -> None:
        self._subscriber = subscriber
        self._queue: "queue.Queue[_QueueItem]" = queue.Queue(maxsize=maxsize)
        self._finished = False

    @property
    def state(self) -> FeedState:
        return self._subscriber.state

    def __iter__(self) -> Iterator[FeedMessage]:
        while True:
            message = self.receive()
            if message is None:
                return
            yield message

    def receive(self, timeout: Optional[float] = None) -> Optional[FeedMessage]:
        """Block for the next message.

        Returns None when the stream has ended or ``timeout`` elapsed, and
        raises ``FeedDisconnectedError`` if the subscriber gave up.
        """
        if self._finished:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if isinstance(item, _EndOfStream):
            self._finished = True
            if item.error is not None:
                raise item.error
            return None
        return item

    def close(self) -> None:
        self._subscriber.close()

    def _offer(self, message: FeedMessage, timeout: float) -> bool:
        try:
            self._queue.put(message, timeout=timeout)
        except queue.Full:
            return False
        return True

    def _end(self, error: Optional[Exception] = None) -> None:
        marker = _EndOfStream(error=error)
        while True:
            try:
                self._queue.put_nowait(marker)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass


class FeedSubscriber:
    """Drives one MQTT client on a dedicated network thread.

    The client's own reconnect logic is not used: every reconnect is
    scheduled by ``policy`` so the retry schedule is explicit.
    """

    def __init__(
        self,
        config: FeedConfig,
        client_factory: Callable[[FeedConfig], Any] = build_paho_client,
        policy: Optional[ReconnectPolicy] = None,
        loop_timeout: float = 1.0,
    ) -> None:
        self.config = config
        self.policy = policy or ReconnectPolicy()
        self._client_factory = client_factory
        self._loop_timeout = loop_timeout
        self._client: Any = None
        self._subscription: Optional[Subscription] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self._state = FeedState.disconnected
        self._state_lock = threading.Lock()
        self._attempt = 0

    @property
    def state(self) -> FeedState:
        with self._state_lock:
            return self._state

    def connect(self) -> Subscription:
        if self._subscription is not None:
            raise RuntimeError("FeedSubscriber.connect() may only be called once.")

        client = self._client_factory(self.config)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        self._client = client

        self._subscription = Subscription(self, maxsize=self.config.queue_size)
        self._thread = threading.Thread(
            target=self._run, name="feed-subscriber", daemon=True
        )
        self._thread.start()
        return self._subscription

    def close(self, timeout: float = 5.0) -> None:
        """Disconnect from the broker and end the subscription stream."""
        if not self._set_state(FeedState.shutting_down):
            return
        logger.info("Shutting down feed subscription", extra={"topic": self.config.topic})
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        if self._client is not None:
            try:
                self._client.disconnect()
            except (OSError, ValueError) as exc:
                logger.warning("Feed disconnect failed", extra={"reason": str(exc)})
        if self._subscription is not None:
            self._subscription._end()

    def _set_state(self, state: FeedState) -> bool:
        with self._state_lock:
            if self._state is FeedState.shutting_down:
                return False
            if self._state is not state:
                logger.info("Feed state changed", extra={"state": state.value})
            self._state = state
            return True

    def _run(self) -> None:
        while not self._stop.is_set():
            state = self.state
            if state is FeedState.shutting_down:
                return
            if state is FeedState.disconnected:
                if not self._reconnect():
                    return
                continue

            rc = self._client.loop(timeout=self._loop_timeout)
            if rc != mqtt.MQTT_ERR_SUCCESS and self.state is not FeedState.disconnected:
                logger.warning(
                    "Feed network loop failed", extra={"reason_code": str(rc)}
                )
                self._set_state(FeedState.disconnected)

    def _reconnect(self) -> bool:
        """Attempt one connect, waiting first when a previous attempt failed."""
        if self._attempt:
            delay = self.policy.delay_for(self._attempt)
            if delay is None:
                self._give_up()
                return False
            logger.info(
                "Reconnecting to feed",
                extra={"attempt": self._attempt, "delay": delay},
            )
            if self._stop.wait(delay):
                return False

        self._attempt += 1
        if not self._set_state(FeedState.connecting):
            return False
        try:
            self._client.connect(
                self.config.host, self.config.port, keepalive=self.config.keepalive
            )
        except (OSError, ValueError) as exc:
            logger.error("Feed connection failed", extra={"reason": str(exc)})
            self._set_state(FeedState.disconnected)
            return True
        return True

    def _give_up(self) -> None:
        attempts = self.policy.max_attempts
        logger.error(
            "Giving up on feed after reconnect attempts",
            extra={"attempt": attempts},
        )
        if self._set_state(FeedState.disconnected) and self._subscription is not None:
            self._subscription._end(
                FeedDisconnectedError(f"Feed unreachable after {attempts} reconnect attempts.")
            )

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error(
                "Feed broker refused connection", extra={"reason_code": str(reason_code)}
            )
            self._set_state(FeedState.disconnected)
            return
        self._attempt = 0
        if not self._set_state(FeedState.connected):
            return
        client.subscribe(self.config.topic)

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties) -> None:
        failures = [code for code in reason_code_list if code.is_failure]
        if failures:
            logger.error(
                "Feed subscription rejected; staying connected",
                extra={"topic": self.config.topic, "reason_code": str(failures[0])},
            )
            return
        if self._set_state(FeedState.subscribed):
            logger.info("Subscribed to feed topic", extra={"topic": self.config.topic})

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        if self._set_state(FeedState.disconnected):
            logger.warning(
                "Disconnected from feed", extra={"reason_code": str(reason_code)}
            )

    def _on_message(self, client, userdata, message) -> None:
        if self.state is not FeedState.subscribed:
            logger.debug("Dropping message received outside subscription")
            return
        if not mqtt.topic_matches_sub(self.config.topic, message.topic):
            logger.debug("Ignoring message", extra={"topic": message.topic})
            return
        subscription = self._subscription
        if subscription is None:
            logger.debug("Dropping message before the subscription exists")
            return
        delivered = subscription._offer(
            FeedMessage(topic=message.topic, payload=bytes(message.payload)),
            timeout=self.config.enqueue_timeout,
        )
        if not delivered:
            logger.warning("Message channel full; dropping message", extra={"topic": message.topic})
