import asyncio
import contextlib
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

import aiohttp

from .codec import Message, RelayErrorCode, decode, encode
from .errors import ConnectError, DecodeError, NotConnectedError, SendError

MAX_CONNECTION_LOGS = 120
PRINTED_LOG_MESSAGES = (
    "ws_connected",
    "connect_failed",
    "ws_error",
    "ws_disconnected",
    "relay_error",
    "listener_failed",
)


class ConnectionState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    OPEN = auto()
    CLOSING = auto()
    CLOSED = auto()


@dataclass(frozen=True)
class ConnectionOpened:
    pass


@dataclass(frozen=True)
class ConnectionClosed:
    code: Optional[int] = None


@dataclass(frozen=True)
class ConnectionErrored:
    reason: str


@dataclass(frozen=True)
class MessageReceived:
    message: Message


@dataclass(frozen=True)
class RelayErrorReceived:
    code: int


class RelayConnection:
    """One websocket connection to the relay.

    Lifecycle events go to ``listener.handle_event(event)``, awaited in order.
    Inbound frames are decoded and dispatched one at a time: the next frame is
    not read until the listener has finished with the previous one.
    """

    def __init__(self, listener=None, heartbeat: Optional[float] = 20.0, connect_timeout: float = 10.0):
        self.listener = listener
        self.heartbeat = heartbeat
        self.connect_timeout = connect_timeout
        self.state = ConnectionState.IDLE
        self.url: Optional[str] = None
        self.last_error: Optional[str] = None
        self.close_code: Optional[int] = None
        self.connection_logs = []
        self.frames_sent = 0
        self.frames_received = 0
        self.bytes_sent = 0
        self.bytes_received = 0
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closed_reported = True

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN and self._ws is not None and not self._ws.closed

    def log_connection(self, message, details=None):
        entry = {
            "t": time.time(),
            "state": self.state.name,
            "message": message,
        }
        if details is not None:
            entry["details"] = details
        self.connection_logs.append(entry)
        if len(self.connection_logs) > MAX_CONNECTION_LOGS:
            self.connection_logs.pop(0)
        if message in PRINTED_LOG_MESSAGES:
            detail_text = f" details={details}" if details is not None else ""
            print(
                f"[relay-conn] t={entry['t']:.3f} msg={message} state={entry['state']}"
                f" framesIn={self.frames_received} framesOut={self.frames_sent}{detail_text}"
            )

    async def connect(self, url: str):
        if self.state not in (ConnectionState.IDLE, ConnectionState.CLOSED):
            raise ConnectError(f"cannot connect while {self.state.name}")
        self.url = url
        self.state = ConnectionState.CONNECTING
        self.last_error = None
        self.close_code = None
        self._closed_reported = False
        self.log_connection("connecting", {"url": url})
        self._http = aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(
                self._http.ws_connect(url, heartbeat=self.heartbeat),
                self.connect_timeout,
            )
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            reason = str(exc) or type(exc).__name__
            self.last_error = reason
            self.log_connection("connect_failed", {"url": url, "reason": reason})
            await self._close_http()
            self.state = ConnectionState.CLOSED
            self._closed_reported = True
            await self._emit(ConnectionErrored(reason))
            raise ConnectError(f"could not reach relay at {url}: {reason}") from exc

        if self.state != ConnectionState.CONNECTING:
            # disconnect() ran while the handshake was in flight
            with contextlib.suppress(Exception):
                await ws.close()
            await self._finish(ws.close_code)
            raise ConnectError(f"connection to {url} was cancelled")

        self._ws = ws
        self.state = ConnectionState.OPEN
        self.log_connection("ws_connected", {"url": url})
        await self._emit(ConnectionOpened())
        if self.state == ConnectionState.OPEN:
            self._receive_task = asyncio.create_task(self.listen_ws(ws))

    async def send(self, message: Message):
        ws = self._ws
        if self.state != ConnectionState.OPEN or ws is None or ws.closed:
            raise NotConnectedError(self.state.name)
        data = encode(message)
        try:
            await ws.send_bytes(data)
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as exc:
            self.log_connection("send_failed", {"reason": str(exc)})
            raise SendError(f"send failed: {exc}") from exc
        self.frames_sent += 1
        self.bytes_sent += len(data)

    async def disconnect(self):
        if self.state in (ConnectionState.IDLE, ConnectionState.CLOSED, ConnectionState.CLOSING):
            return
        if self.state == ConnectionState.CONNECTING:
            self.state = ConnectionState.CLOSING
            return
        self.state = ConnectionState.CLOSING
        self.log_connection("closing")
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        task = self._receive_task
        if task is not None and task is not asyncio.current_task():
            await task
        elif task is None:
            await self._finish(ws.close_code if ws is not None else None)

    async def listen_ws(self, ws: aiohttp.ClientWebSocketResponse):
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self.frames_received += 1
                    self.bytes_received += len(msg.data)
                    await self._dispatch_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    reason = str(ws.exception() or "websocket error")
                    self.last_error = reason
                    self.log_connection("ws_error", {"reason": reason})
                    await self._emit(ConnectionErrored(reason))
                    break
        finally:
            self._receive_task = None
            if not ws.closed:
                with contextlib.suppress(Exception):
                    await ws.close()
            await self._finish(ws.close_code)

    async def _dispatch_frame(self, data):
        try:
            decoded = decode(data)
        except DecodeError as exc:
            self.log_connection("frame_dropped", {"reason": str(exc)})
            return
        if isinstance(decoded, RelayErrorCode):
            self.last_error = f"relay error {decoded.code}"
            self.log_connection("relay_error", {"code": decoded.code})
            await self._emit(RelayErrorReceived(decoded.code))
            return
        await self._emit(MessageReceived(decoded))

    async def _emit(self, event):
        if self.listener is None:
            return
        try:
            await self.listener.handle_event(event)
        except Exception as exc:
            self.log_connection("listener_failed", {"event": type(event).__name__, "reason": repr(exc)})

    async def _close_http(self):
        http = self._http
        self._http = None
        if http is not None and not http.closed:
            await http.close()

    async def _finish(self, code):
        if self._closed_reported:
            return
        self._closed_reported = True
        self._ws = None
        await self._close_http()
        self.close_code = code
        self.state = ConnectionState.CLOSED
        self.log_connection("ws_disconnected", {"code": code})
        await self._emit(ConnectionClosed(code))
