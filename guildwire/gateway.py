"""
The MIT License (MIT)

Copyright (c) 2015-present Rapptz

Permission is hereby granted, free of charge, to any person obtaining a
copy of this software and associated documentation files (the "Software"),
to deal in the Software without restriction, including without limitation
the rights to use, copy, modify, merge, publish, distribute, sublicense,
and/or sell copies of the Software, and to permit persons to whom the
Software is furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in
all copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS
OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING
FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER
DEALINGS IN THE SOFTWARE.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
import zlib
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union, TYPE_CHECKING

import aiohttp
import yarl

from . import utils
from .errors import ConnectionClosed

if TYPE_CHECKING:
    from typing_extensions import Self

    from .client import Client
    from .state import ConnectionState

_log = logging.getLogger(__name__)

__all__ = (
    'GatewaySession',
    'GatewayRatelimiter',
    'KeepAliveHandler',
    'ReconnectWebSocket',
)

# close codes after which the session cannot be picked up again
FATAL_CLOSE_CODES = frozenset((1000, 4004, 4010, 4011, 4012, 4013, 4014))

ZLIB_SUFFIX = b'\x00\x00\xff\xff'


class ReconnectWebSocket(Exception):
    """Raised out of :meth:`GatewaySession.poll_event` when the client has to open a new connection.

    ``resume`` tells whether the new connection should RESUME the
    current session or IDENTIFY a fresh one.
    """

    def __init__(self, *, resume: bool = True) -> None:
        super().__init__('RESUME' if resume else 'IDENTIFY')
        self.resume: bool = resume

    @property
    def op(self) -> str:
        return 'RESUME' if self.resume else 'IDENTIFY'


class GatewayRatelimiter:
    """Keeps outbound frames under ``count`` per sliding ``per`` second window.

    The default leaves room in Discord's 120 per minute limit for heartbeats,
    which skip this limiter.
    """

    def __init__(self, count: int = 110, per: float = 60.0) -> None:
        self.count: int = count
        self.per: float = per
        self._sent: Deque[float] = deque()
        self._lock: asyncio.Lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        sent = self._sent
        while sent and now - sent[0] >= self.per:
            sent.popleft()

    def is_ratelimited(self) -> bool:
        self._expire(time.monotonic())
        return len(self._sent) >= self.count

    def get_delay(self) -> float:
        """Claims a send slot, or returns how long to wait for the oldest one to free up."""
        now = time.monotonic()
        self._expire(now)
        if len(self._sent) >= self.count:
            return self.per - (now - self._sent[0])

        self._sent.append(now)
        return 0.0

    async def block(self) -> None:
        async with self._lock:
            while True:
                delay = self.get_delay()
                if not delay:
                    return
                _log.warning('Gateway send rate exceeded, holding frames back for %.2f seconds.', delay)
                await asyncio.sleep(delay)


class KeepAliveHandler:
    """Heartbeats on the interval announced by HELLO.

    If nothing at all was received from the gateway within the heartbeat
    timeout the connection is closed so the client reconnects.
    """

    def __init__(self, *, ws: GatewaySession, interval: float) -> None:
        self.ws: GatewaySession = ws
        self.interval: float = interval
        self.latency: float = float('inf')
        self._task: Optional[asyncio.Task[None]] = None
        now = time.perf_counter()
        self._last_sent: float = now
        self._last_seen: float = now

    def get_payload(self) -> Dict[str, Any]:
        return {'op': GatewaySession.HEARTBEAT, 'd': self.ws.sequence}

    def start(self) -> None:
        self._task = self.ws.loop.create_task(self._run(), name='guildwire: heartbeat')

    def stop(self) -> None:
        task = self._task
        self._task = None
        # the heartbeat task stops itself by returning
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def seen(self) -> None:
        self._last_seen = time.perf_counter()

    def ack(self) -> None:
        self.latency = time.perf_counter() - self._last_sent
        if self.latency > 10:
            _log.warning('Heartbeat ACK took %.1fs, the event loop may be blocked.', self.latency)

    async def _run(self) -> None:
        timeout = self.ws._max_heartbeat_timeout
        while True:
            await asyncio.sleep(self.interval)

            if time.perf_counter() - self._last_seen > timeout:
                _log.warning('Nothing received from the gateway for %s seconds. Closing to reconnect.', timeout)
                await self.ws.close(4000)
                return

            payload = self.get_payload()
            _log.debug('Sending heartbeat for sequence %s.', payload['d'])
            try:
                await asyncio.wait_for(self.ws.send_heartbeat(payload), timeout=10.0)
            except asyncio.TimeoutError:
                _log.warning('Sending a heartbeat took longer than 10 seconds. Retrying on the next interval.')
            except ConnectionClosed:
                return
            else:
                self._last_sent = time.perf_counter()


class GatewaySession:
    """A single connection to Discord's gateway, API version 10.

    Frames are read one at a time by :meth:`poll_event`. Dispatches are
    handed to the :class:`ConnectionState` parser named after the event,
    unless the guild setup controller holds the event back because its
    guild is still being constructed.

    Attributes
    -----------
    gateway: :class:`yarl.URL`
        Where a RESUME should connect to.
    session_id: Optional[:class:`str`]
        The session given by READY.
    sequence: Optional[:class:`int`]
        The last sequence number received.
    """

    DEFAULT_GATEWAY = yarl.URL('wss://gateway.discord.gg/')

    # fmt: off
    DISPATCH           = 0
    HEARTBEAT          = 1
    IDENTIFY           = 2
    RESUME             = 6
    RECONNECT          = 7
    REQUEST_MEMBERS    = 8
    INVALIDATE_SESSION = 9
    HELLO              = 10
    HEARTBEAT_ACK      = 11
    GUILD_SYNC         = 12
    # fmt: on

    def __init__(
        self,
        socket: aiohttp.ClientWebSocketResponse,
        *,
        state: ConnectionState,
        token: Optional[str],
        gateway: Optional[yarl.URL] = None,
    ) -> None:
        self.socket: aiohttp.ClientWebSocketResponse = socket
        self.loop: asyncio.AbstractEventLoop = state.loop
        self.token: Optional[str] = token
        self.gateway: yarl.URL = gateway or self.DEFAULT_GATEWAY
        self.session_id: Optional[str] = None
        self.sequence: Optional[int] = None

        self._state: ConnectionState = state
        self._inflator = zlib.decompressobj()
        self._buffer: bytearray = bytearray()
        self._keep_alive: Optional[KeepAliveHandler] = None
        self._close_code: Optional[int] = None
        self._ratelimiter: GatewayRatelimiter = GatewayRatelimiter()
        self._max_heartbeat_timeout: float = state.heartbeat_timeout

        self._op_handlers: Dict[int, Callable[[Any], Awaitable[None]]] = {
            self.HELLO: self._on_hello,
            self.HEARTBEAT: self._on_heartbeat_request,
            self.HEARTBEAT_ACK: self._on_heartbeat_ack,
            self.RECONNECT: self._on_reconnect,
            self.INVALIDATE_SESSION: self._on_invalidate_session,
        }

        state._update_references(self)

    @classmethod
    async def connect(
        cls,
        client: Client,
        *,
        gateway: Optional[yarl.URL] = None,
        session_id: Optional[str] = None,
        sequence: Optional[int] = None,
        resume: bool = False,
        initial: bool = False,
    ) -> Self:
        """Opens a connection for ``client``, waits for HELLO and then IDENTIFYs or RESUMEs."""
        # circular import
        from .http import INTERNAL_API_VERSION

        gateway = gateway or cls.DEFAULT_GATEWAY
        url = gateway.with_query(v=INTERNAL_API_VERSION, encoding='json', compress='zlib-stream')
        socket = await client.http.ws_connect(str(url))

        ws = cls(socket, state=client._connection, token=client.http.token, gateway=gateway)
        ws.session_id = session_id
        ws.sequence = sequence
        _log.debug('Opened a gateway connection to %s.', gateway)

        await ws.poll_event()
        if resume:
            await ws.resume()
        else:
            await ws.identify(initial=initial)
        return ws

    @property
    def open(self) -> bool:
        return not self.socket.closed

    @property
    def latency(self) -> float:
        """:class:`float`: Seconds between the last HEARTBEAT and its ACK."""
        keep_alive = self._keep_alive
        return keep_alive.latency if keep_alive is not None else float('inf')

    def is_ratelimited(self) -> bool:
        return self._ratelimiter.is_ratelimited()

    # Outbound

    async def identify(self, *, initial: bool = False) -> None:
        await self._state.call_hooks('before_identify', initial=initial)
        await self.send_as_json(
            {
                'op': self.IDENTIFY,
                'd': {
                    'token': self.token,
                    'properties': {'os': sys.platform, 'browser': 'guildwire', 'device': 'guildwire'},
                    'compress': False,
                    'large_threshold': 250,
                    'intents': self._state.intents,
                },
            }
        )
        _log.debug('Sent IDENTIFY.')

    async def resume(self) -> None:
        await self.send_as_json(
            {
                'op': self.RESUME,
                'd': {'token': self.token, 'session_id': self.session_id, 'seq': self.sequence},
            }
        )
        _log.debug('Sent RESUME for session %s at sequence %s.', self.session_id, self.sequence)

    async def request_chunks(self, guild_ids: Union[int, List[int]], query: str = '', *, limit: int = 0) -> None:
        """Asks for the members of one guild, or of several guilds in one frame.

        An empty ``query`` with a ``limit`` of 0 asks for every member.
        """
        if isinstance(guild_ids, int):
            guild_id: Union[str, List[str]] = str(guild_ids)
        else:
            guild_id = [str(g) for g in guild_ids]

        _log.debug('Requesting members for guild(s) %s.', guild_id)
        await self.send_as_json({'op': self.REQUEST_MEMBERS, 'd': {'guild_id': guild_id, 'query': query, 'limit': limit}})

    async def request_sync(self, guild_id: int) -> None:
        """Asks for a GUILD_SYNC. Only user accounts may send this."""
        _log.debug('Requesting a sync for guild %s.', guild_id)
        await self.send_as_json({'op': self.GUILD_SYNC, 'd': {'guild_id': str(guild_id)}})

    async def send(self, data: str, /) -> None:
        await self._ratelimiter.block()
        await self.socket.send_str(data)

    async def send_as_json(self, data: Any) -> None:
        await self._send_checked(self.send, data)

    async def send_heartbeat(self, data: Any) -> None:
        # heartbeats go straight to the socket
        await self._send_checked(self.socket.send_str, data)

    async def _send_checked(self, sender: Callable[[str], Awaitable[None]], data: Any) -> None:
        try:
            await sender(utils._to_json(data))
        except RuntimeError as exc:
            # aiohttp raises RuntimeError when sending on a closing socket
            if not self._can_resume():
                raise ConnectionClosed(self.socket) from exc

    # Inbound

    def _decode(self, msg: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        if isinstance(msg, bytes):
            self._buffer.extend(msg)
            if len(msg) < 4 or msg[-4:] != ZLIB_SUFFIX:
                return None
            raw = self._inflator.decompress(self._buffer)
            self._buffer = bytearray()
            msg = raw.decode('utf-8')
        return utils._from_json(msg)

    async def received_message(self, msg: Union[str, bytes], /) -> None:
        payload = self._decode(msg)
        if payload is None:
            return

        _log.debug('Gateway frame: %s.', payload)
        if self._keep_alive is not None:
            self._keep_alive.seen()

        seq = payload.get('s')
        if seq is not None:
            self.sequence = seq

        op = payload.get('op')
        data = payload.get('d')
        if op == self.DISPATCH:
            self._handle_dispatch(payload.get('t'), data)
            return

        handler = self._op_handlers.get(op)  # type: ignore
        if handler is None:
            _log.warning('Unknown gateway opcode %s.', op)
            return
        await handler(data)

    def _handle_dispatch(self, event: Optional[str], data: Any) -> None:
        if event == 'READY':
            self.session_id = data['session_id']
            resume_url = data.get('resume_gateway_url')
            if resume_url:
                self.gateway = yarl.URL(resume_url)
            _log.info('Connected to the gateway with session %s.', self.session_id)
        elif event == 'RESUMED':
            _log.info('Resumed gateway session %s.', self.session_id)

        parser = self._state.parsers.get(event)  # type: ignore
        if parser is None:
            _log.debug('No parser for event %s.', event)
            return

        if self._state.setup.try_defer(event, data):  # type: ignore
            return

        parser(data)

    async def _on_hello(self, data: Dict[str, Any]) -> None:
        self._keep_alive = KeepAliveHandler(ws=self, interval=data['heartbeat_interval'] / 1000.0)
        # first beat goes out right away
        await self.send_heartbeat(self._keep_alive.get_payload())
        self._keep_alive.start()

    async def _on_heartbeat_request(self, data: Any) -> None:
        if self._keep_alive is not None:
            await self.send_heartbeat(self._keep_alive.get_payload())

    async def _on_heartbeat_ack(self, data: Any) -> None:
        if self._keep_alive is not None:
            self._keep_alive.ack()

    async def _on_reconnect(self, data: Any) -> None:
        _log.debug('Gateway asked for a reconnect.')
        await self.close()
        raise ReconnectWebSocket(resume=True)

    async def _on_invalidate_session(self, resumable: Any) -> None:
        if resumable is True:
            await self.close()
            raise ReconnectWebSocket(resume=True)

        _log.info('Gateway session %s was invalidated, a new one will be identified.', self.session_id)
        self.session_id = None
        self.sequence = None
        self.gateway = self.DEFAULT_GATEWAY
        await self.close(code=1000)
        raise ReconnectWebSocket(resume=False)

    def _can_resume(self) -> bool:
        code = self._close_code or self.socket.close_code
        return code not in FATAL_CLOSE_CODES

    def _stop_heartbeat(self) -> None:
        if self._keep_alive is not None:
            self._keep_alive.stop()
            self._keep_alive = None

    async def poll_event(self) -> None:
        """Reads and handles one frame.

        Raises
        ------
        ReconnectWebSocket
            The connection dropped in a way that allows reconnecting.
        ConnectionClosed
            The connection was closed with a code that does not allow it.
        """
        try:
            msg = await self.socket.receive(timeout=self._max_heartbeat_timeout)
        except asyncio.TimeoutError:
            self._stop_heartbeat()
            _log.debug('No frame within %s seconds. Reconnecting.', self._max_heartbeat_timeout)
            raise ReconnectWebSocket from None

        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            await self.received_message(msg.data)
            return

        if msg.type is aiohttp.WSMsgType.ERROR:
            _log.debug('Gateway socket error: %s.', msg)
            raise msg.data

        if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
            self._stop_heartbeat()
            code = self._close_code or self.socket.close_code
            if self._can_resume():
                _log.debug('Gateway closed with %s. Reconnecting.', code)
                raise ReconnectWebSocket from None

            _log.debug('Gateway closed with %s, which cannot be recovered from.', code)
            raise ConnectionClosed(self.socket, code=code) from None

    async def close(self, code: int = 4000) -> None:
        self._stop_heartbeat()
        self._close_code = code
        await self.socket.close(code=code)
