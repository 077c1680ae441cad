"""
Request/response bridge to the external cryptographic engine.

The engine is reachable only through asynchronous messages.  Every call is
tagged with a fresh UUID correlation token; the reply carrying the same
token resolves (``res``) or rejects (``rej``) the waiting caller.  Any
number of calls may be outstanding at once and replies may arrive in any
order.

Wire envelope (JSON):

    request  {"uuid": "<token>", "name": "<operation>", "args": [...]}
    reply    {"uuid": "<token>", "res": <value>}
             {"uuid": "<token>", "rej": <reason>}

Messages without a ``uuid`` (readiness announcements and the like) are
ignored.

Two transports are provided:

* :class:`StreamTransport`: newline-delimited JSON over an asyncio TCP
  stream (optionally TLS).
* :class:`WebSocketTransport`: JSON text frames over an ``aiohttp``
  WebSocket client connection.

Usage::

    bridge = EngineBridge(StreamTransport("127.0.0.1", 7420), call_timeout=600)
    await bridge.start()
    root = await bridge.call("get_sapling_root", tree_hex)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Optional

import aiohttp

from shield_core.errors import EngineDisconnected, EngineFailure, EngineTimeout

if TYPE_CHECKING:
    from shield_core.config import EngineConfig

logger = logging.getLogger("shield.bridge")

# Block batches and proving-key buffers are large; allow big single messages.
MAX_MSG_BYTES = 64 * 1024 * 1024

MessageHandler = Callable[[dict], None]
CloseHandler = Callable[[Optional[BaseException]], None]


# =====================================================================
# Message helpers
# =====================================================================

def encode_message(message: dict) -> bytes:
    """Encode a message as a newline-terminated JSON blob."""
    return (json.dumps(message, default=str) + "\n").encode("utf-8")


def decode_message(data: bytes | str) -> dict | None:
    """Decode one JSON message; returns None for garbage or non-objects."""
    try:
        result = json.loads(data.strip())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return result if isinstance(result, dict) else None


# =====================================================================
# Transports
# =====================================================================

class Transport(ABC):
    """Carries request envelopes to the engine and replies back."""

    @abstractmethod
    async def start(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        """Open the channel and begin delivering replies to *on_message*."""

    @abstractmethod
    async def send(self, message: dict) -> None:
        """Send one request envelope.  Raises ConnectionError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel."""


class StreamTransport(Transport):
    """Newline-delimited JSON over an asyncio TCP connection."""

    def __init__(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext | None = None,
        max_message_bytes: int = MAX_MSG_BYTES,
    ):
        self.host = host
        self.port = port
        self._ssl_context = ssl_context
        self._max_message_bytes = max_message_bytes
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task | None = None
        self.messages_sent = 0
        self.messages_received = 0

    async def start(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        self._reader, self._writer = await asyncio.open_connection(
            self.host, self.port, ssl=self._ssl_context,
            limit=self._max_message_bytes,
        )
        logger.info(f"Connected to engine at {self.host}:{self.port}")
        self._task = asyncio.create_task(self._read_loop(on_message, on_close))

    async def _read_loop(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        assert self._reader is not None
        error: BaseException | None = None
        try:
            while True:
                try:
                    data = await self._reader.readuntil(b"\n")
                except asyncio.IncompleteReadError:
                    break
                msg = decode_message(data)
                if msg is None:
                    logger.warning("Dropping undecodable engine message")
                    continue
                self.messages_received += 1
                on_message(msg)
        except asyncio.CancelledError:
            raise
        except (asyncio.LimitOverrunError, ConnectionError, OSError) as exc:
            logger.warning(f"Engine stream error: {exc}")
            error = exc
        finally:
            on_close(error)

    async def send(self, message: dict) -> None:
        if self._writer is None:
            raise ConnectionError("Transport not started")
        self._writer.write(encode_message(message))
        await self._writer.drain()
        self.messages_sent += 1

    async def close(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._writer:
            self._writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await self._writer.wait_closed()
            self._writer = None


class WebSocketTransport(Transport):
    """JSON text frames over an aiohttp WebSocket client connection."""

    def __init__(
        self,
        url: str,
        session: aiohttp.ClientSession | None = None,
        heartbeat: float | None = 30.0,
        max_message_bytes: int = MAX_MSG_BYTES,
    ):
        self.url = url
        self._session = session
        self._owns_session = session is None
        self._heartbeat = heartbeat
        self._max_message_bytes = max_message_bytes
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task | None = None

    async def start(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._ws = await self._session.ws_connect(
            self.url, heartbeat=self._heartbeat, max_msg_size=self._max_message_bytes,
        )
        logger.info(f"Connected to engine at {self.url}")
        self._task = asyncio.create_task(self._read_loop(on_message, on_close))

    async def _read_loop(self, on_message: MessageHandler, on_close: CloseHandler) -> None:
        assert self._ws is not None
        error: BaseException | None = None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    decoded = decode_message(msg.data)
                    if decoded is None:
                        logger.warning("Dropping undecodable engine frame")
                        continue
                    on_message(decoded)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = self._ws.exception()
                    logger.warning(f"Engine websocket error: {error}")
                    break
        except asyncio.CancelledError:
            raise
        except aiohttp.ClientError as exc:
            logger.warning(f"Engine websocket error: {exc}")
            error = exc
        finally:
            on_close(error)

    async def send(self, message: dict) -> None:
        if self._ws is None or self._ws.closed:
            raise ConnectionError("WebSocket not connected")
        try:
            await self._ws.send_str(json.dumps(message, default=str))
        except aiohttp.ClientError as exc:
            raise ConnectionError(str(exc)) from exc

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None


# =====================================================================
# Bridge
# =====================================================================

class EngineBridge:
    """
    Correlates asynchronous engine replies with the calls that caused them.

    ``call_timeout`` bounds how long a handle may stay registered.  When it
    expires the handle is evicted and the call fails with
    :class:`EngineTimeout`; a reply arriving later is discarded.  ``None``
    waits forever.
    """

    def __init__(self, transport: Transport, call_timeout: float | None = None):
        self.transport = transport
        self.call_timeout = call_timeout
        # token -> (operation name, future)
        self._pending: dict[str, tuple[str, asyncio.Future]] = {}
        self._closed = False
        # reason the transport went away on its own; cleared by start()
        self._lost: object = None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._closed = False
        self._lost = None
        await self.transport.start(self.handle_reply, self._on_transport_closed)

    async def close(self) -> None:
        self._closed = True
        await self.transport.close()
        self.fail_all("bridge closed")

    @property
    def outstanding(self) -> int:
        """Number of calls still waiting for a reply."""
        return len(self._pending)

    # ── Calls ────────────────────────────────────────────────────────

    async def call(self, name: str, *args: Any) -> Any:
        """Invoke *name* on the engine and wait for its reply."""
        if self._closed:
            raise EngineDisconnected(name, "bridge closed")
        if self._lost is not None:
            raise EngineDisconnected(name, self._lost)
        token = str(uuid.uuid4())
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[token] = (name, future)
        try:
            try:
                await self.transport.send({"uuid": token, "name": name, "args": list(args)})
            except (ConnectionError, OSError) as exc:
                raise EngineDisconnected(name, exc) from exc
            if self.call_timeout is None:
                return await future
            try:
                return await asyncio.wait_for(future, self.call_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Engine call {name} ({token[:8]}) timed out after "
                    f"{self.call_timeout}s; evicting"
                )
                raise EngineTimeout(name, f"no reply within {self.call_timeout}s") from None
        finally:
            self._pending.pop(token, None)

    def handle_reply(self, message: dict) -> None:
        """Resolve the call registered under the message's token."""
        token = message.get("uuid")
        if not token:
            return
        entry = self._pending.pop(token, None)
        if entry is None:
            logger.debug(f"Discarding reply for unknown or abandoned call {token}")
            return
        name, future = entry
        if future.done():
            return
        if message.get("rej") is not None:
            future.set_exception(EngineFailure(name, message["rej"]))
        else:
            future.set_result(message.get("res"))

    def fail_all(self, reason: object) -> None:
        """Fail every outstanding call with :class:`EngineDisconnected`."""
        pending, self._pending = self._pending, {}
        for name, future in pending.values():
            if not future.done():
                future.set_exception(EngineDisconnected(name, reason))
        if pending:
            logger.warning(f"Failed {len(pending)} outstanding engine call(s): {reason}")

    def _on_transport_closed(self, error: BaseException | None) -> None:
        if self._closed:
            return
        self._lost = error or "transport closed"
        logger.warning(f"Engine transport closed: {error or 'EOF'}")
        self.fail_all(self._lost)


async def open_bridge(cfg: EngineConfig) -> EngineBridge:
    """Build, connect and return a bridge described by *cfg*."""
    transport: Transport
    if cfg.transport == "websocket":
        transport = WebSocketTransport(cfg.url, max_message_bytes=cfg.max_message_bytes)
    elif cfg.transport == "stream":
        transport = StreamTransport(
            cfg.host, cfg.port, max_message_bytes=cfg.max_message_bytes,
        )
    else:
        raise ValueError(f"Unknown engine transport {cfg.transport!r}")
    bridge = EngineBridge(transport, call_timeout=cfg.call_timeout or None)
    await bridge.start()
    return bridge
