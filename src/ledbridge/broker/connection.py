"""Broker connection manager -- owns the single MQTT link to the bus.

Exposes a narrow contract (connect, publish, close, status) and hides the
reconnect loop behind it. The connection state is written only here; other
components receive immutable ConnectionState snapshots.

Publishing never queues: while the link is not Connected a publish fails
fast with NotConnectedError. Accepted publishes are handed to the transport
in the background and recorded once in the traffic log. Every inbound
message on a subscribed topic is recorded in the traffic log as well.
"""

from __future__ import annotations

import asyncio
import ssl
from collections.abc import Awaitable, Callable

import aiomqtt

from ledbridge.config import MqttSettings
from ledbridge.exceptions import ConnectError, NotConnectedError, StorageError
from ledbridge.logging import get_logger
from ledbridge.models import (
    ConnectionPhase,
    ConnectionState,
    Direction,
    PublishAck,
    TrafficLogEntry,
)
from ledbridge.storage.store import PersistenceGateway

logger = get_logger(__name__)

ClientFactory = Callable[[], aiomqtt.Client]
MessageListener = Callable[[str, str], Awaitable[None]]


class BrokerConnection:
    """Single authenticated, optionally TLS-encrypted MQTT connection.

    Lifecycle: Disconnected -> Connecting -> Connected. An unexpected drop
    moves the link to Reconnecting and a new handshake is attempted every
    reconnect_delay seconds until close() is called.

    Args:
        settings: Broker endpoint, credentials and timeouts.
        gateway: Receives one traffic log entry per publish and per inbound message.
        client_factory: Builds a fresh aiomqtt client per handshake (tests inject fakes).
    """

    def __init__(
        self,
        settings: MqttSettings,
        gateway: PersistenceGateway,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        self._client_factory = client_factory or self._build_client
        self._client: aiomqtt.Client | None = None
        self._state = ConnectionState()
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._first_connect: asyncio.Future | None = None  # type: ignore[type-arg]
        self._closing = False
        self._pending: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._listeners: list[MessageListener] = []

    # ──────────────────────────────────────────────
    # Public contract
    # ──────────────────────────────────────────────

    def status(self) -> ConnectionState:
        """Return the current connection state snapshot."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.phase is ConnectionPhase.CONNECTED

    def add_listener(self, listener: MessageListener) -> None:
        """Register a coroutine called with (topic, payload) for inbound messages."""
        self._listeners.append(listener)

    async def connect(self) -> None:
        """Establish the connection and start the supervising task.

        Raises:
            ConnectError: The initial handshake failed or did not complete
                within connect_timeout. No retry happens in that case.
        """
        if self._task is not None:
            logger.warning("broker_already_started", phase=self._state.phase.value)
            return

        self._closing = False
        self._set_state(ConnectionPhase.CONNECTING)
        self._first_connect = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name="broker-connection")

        logger.info(
            "broker_connecting",
            host=self._settings.host,
            port=self._settings.port,
            tls=self._settings.use_tls,
            client_id=self._settings.client_id,
        )
        try:
            await asyncio.wait_for(
                asyncio.shield(self._first_connect),
                timeout=self._settings.connect_timeout,
            )
        except Exception as exc:
            await self._stop_task()
            error = str(exc) or type(exc).__name__
            self._set_state(ConnectionPhase.DISCONNECTED, error)
            logger.error("broker_connect_failed", error=error)
            raise ConnectError(
                f"Could not connect to {self._settings.host}:{self._settings.port}: {error}"
            ) from exc

    async def publish(
        self,
        topic: str,
        payload: str,
        qos: int = 0,
        retain: bool = False,
    ) -> PublishAck:
        """Hand a message to the transport without waiting for the broker.

        Raises:
            NotConnectedError: The link is not Connected. Nothing is queued
                and no traffic log entry is written.
            StorageError: The traffic log entry could not be written.
        """
        client = self._client
        if self._state.phase is not ConnectionPhase.CONNECTED or client is None:
            logger.warning(
                "publish_rejected_not_connected",
                topic=topic,
                phase=self._state.phase.value,
            )
            raise NotConnectedError(
                f"Cannot publish to {topic}: broker is {self._state.phase.value}"
            )

        task = asyncio.create_task(self._deliver(client, topic, payload, qos, retain))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        await self._gateway.insert_log(
            TrafficLogEntry(topic=topic, payload=payload, direction=Direction.PUBLISH)
        )
        return PublishAck(topic=topic, qos=qos, retain=retain)

    async def wait_for_pending(self, timeout: float | None = None) -> None:
        """Wait until background handoffs finish (bounded by timeout)."""
        if not self._pending:
            return
        await asyncio.wait(
            set(self._pending),
            timeout=timeout if timeout is not None else self._settings.publish_timeout,
        )

    async def close(self) -> None:
        """Disconnect gracefully. Calling it when already closed is a no-op."""
        if self._task is None:
            return

        logger.info("broker_closing")
        self._closing = True
        await self.wait_for_pending()
        await self._stop_task()
        self._set_state(ConnectionPhase.DISCONNECTED)
        logger.info("broker_closed")

    # ──────────────────────────────────────────────
    # Connection loop
    # ──────────────────────────────────────────────

    async def _run(self) -> None:
        """Hold the connection open, reconnecting on a fixed delay after drops."""
        while not self._closing:
            client = self._client_factory()
            try:
                async with client:
                    self._client = client
                    self._set_state(ConnectionPhase.CONNECTED)
                    logger.info("broker_connected", host=self._settings.host)
                    if self._first_connect is not None and not self._first_connect.done():
                        self._first_connect.set_result(None)
                    await self._subscribe(client)
                    await self._receive(client)
                # Message stream ended without an error: treat as a drop
                error: str | None = "message stream closed"
            except aiomqtt.MqttError as exc:
                error = str(exc) or type(exc).__name__
                if self._fail_first_connect(exc):
                    return
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.error("broker_loop_error", error=error, exc_info=True)
                if self._fail_first_connect(exc):
                    return
            finally:
                self._client = None

            if self._closing:
                break

            self._set_state(ConnectionPhase.RECONNECTING, error)
            logger.warning(
                "broker_connection_lost",
                error=error,
                retry_in=self._settings.reconnect_delay,
            )
            await asyncio.sleep(self._settings.reconnect_delay)

    def _fail_first_connect(self, exc: Exception) -> bool:
        """Hand a handshake failure to connect(); False once already connected."""
        if self._first_connect is None or self._first_connect.done():
            return False
        self._first_connect.set_exception(exc)
        return True

    async def _subscribe(self, client: aiomqtt.Client) -> None:
        for topic in self._settings.subscribe_topics:
            await client.subscribe(topic, qos=1)
            logger.info("broker_subscribed", topic=topic)

    async def _receive(self, client: aiomqtt.Client) -> None:
        async for message in client.messages:
            await self._handle_message(str(message.topic), message.payload)

    async def _handle_message(self, topic: str, payload: object) -> None:
        """Record one inbound message, then hand it to listeners."""
        if isinstance(payload, (bytes, bytearray)):
            text = bytes(payload).decode("utf-8", errors="replace")
        elif payload is None:
            text = ""
        else:
            text = str(payload)

        logger.debug("broker_message_received", topic=topic, preview=text[:50])

        try:
            await self._gateway.insert_log(
                TrafficLogEntry(topic=topic, payload=text, direction=Direction.SUBSCRIBE)
            )
        except StorageError:
            logger.error("inbound_log_failed", topic=topic, exc_info=True)

        for listener in self._listeners:
            try:
                await listener(topic, text)
            except Exception:
                logger.warning("message_listener_error", topic=topic, exc_info=True)

    async def _deliver(
        self,
        client: aiomqtt.Client,
        topic: str,
        payload: str,
        qos: int,
        retain: bool,
    ) -> None:
        try:
            await client.publish(
                topic,
                payload,
                qos=qos,
                retain=retain,
                timeout=self._settings.publish_timeout,
            )
        except aiomqtt.MqttError as exc:
            logger.warning("publish_delivery_failed", topic=topic, error=str(exc))
        else:
            logger.debug("published", topic=topic, qos=qos)

    async def _stop_task(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await asyncio.wait_for(task, timeout=self._settings.close_timeout)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass
        except aiomqtt.MqttError:
            logger.warning("broker_disconnect_error", exc_info=True)
        self._client = None

    def _set_state(self, phase: ConnectionPhase, error: str | None = None) -> None:
        previous = self._state.phase
        self._state = ConnectionState(phase=phase, last_error=error)
        if previous is not phase:
            logger.debug("broker_phase_changed", previous=previous.value, phase=phase.value)

    def _build_client(self) -> aiomqtt.Client:
        settings = self._settings
        return aiomqtt.Client(
            hostname=settings.host,
            port=settings.port,
            username=settings.username or None,
            password=settings.password.get_secret_value() or None,
            identifier=settings.client_id,
            keepalive=settings.keepalive,
            timeout=settings.connect_timeout,
            clean_session=True,
            tls_context=ssl.create_default_context() if settings.use_tls else None,
        )
