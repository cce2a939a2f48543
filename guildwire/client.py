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
from typing import Any, Callable, Coroutine, Dict, List, Optional, Type, TypeVar, TYPE_CHECKING

import aiohttp
import yarl

from . import utils
from .backoff import ExponentialBackoff
from .errors import ConnectionClosed, GatewayNotFound, HTTPException
from .gateway import GatewaySession, ReconnectWebSocket
from .guild import Guild
from .http import HTTPClient
from .state import ConnectionState
from .user import ClientUser
from .utils import MISSING

if TYPE_CHECKING:
    from types import TracebackType

    from typing_extensions import Self

    from .channel import GuildChannel
    from .role import Role
    from .user import User

__all__ = ('Client',)

Coro = TypeVar('Coro', bound=Callable[..., Coroutine[Any, Any, Any]])

_log = logging.getLogger(__name__)

# errors after which the connect loop backs off and tries again
RECOVERABLE_ERRORS = (
    OSError,
    HTTPException,
    GatewayNotFound,
    ConnectionClosed,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


class Client:
    r"""A connection to Discord that keeps a cached view of its guilds.

    Events are delivered to coroutines named ``on_<event>``, registered
    with :meth:`event` or defined on a subclass. A guild is safe to read
    once ``on_guild_ready`` fired for it.

    Options not listed here are passed on to :class:`ConnectionState`:
    ``bot``, ``intents``, ``chunk_guilds_at_startup``, ``chunk_timeout``,
    ``heartbeat_timeout`` and ``guild_ready_timeout``.

    Parameters
    -----------
    connector: Optional[:class:`aiohttp.BaseConnector`]
        The connector used for REST requests.
    proxy: Optional[:class:`str`]
        Proxy URL.
    proxy_auth: Optional[:class:`aiohttp.BasicAuth`]
        Basic authorization for the proxy.
    assume_unsync_clock: :class:`bool`
        Trust the relative rate limit reset over the system clock.
        Defaults to ``True``.
    bucket_cleanup_interval: :class:`float`
        Seconds between sweeps of idle rate limit buckets. ``0`` disables
        the sweep. Defaults to ``30.0``.
    max_server_retries: :class:`int`
        How often a request that got a 5xx answer is sent again.
        Defaults to ``0``.
    http_trace: Optional[:class:`aiohttp.TraceConfig`]
        Trace configuration for the REST session.
    """

    def __init__(self, **options: Any) -> None:
        self.loop: asyncio.AbstractEventLoop = MISSING
        self.ws: Optional[GatewaySession] = None
        self.http: HTTPClient = HTTPClient(
            MISSING,
            options.pop('connector', None),
            proxy=options.pop('proxy', None),
            proxy_auth=options.pop('proxy_auth', None),
            unsync_clock=options.pop('assume_unsync_clock', True),
            bucket_cleanup_interval=options.pop('bucket_cleanup_interval', 30.0),
            max_server_retries=options.pop('max_server_retries', 0),
            http_trace=options.pop('http_trace', None),
        )
        self._connection: ConnectionState = ConnectionState(
            dispatch=self.dispatch,
            handlers={'ready': self._set_ready},
            hooks={'before_identify': self.before_identify_hook},
            http=self.http,
            **options,
        )
        self._ready: asyncio.Event = MISSING
        self._closing_task: Optional[asyncio.Task[None]] = None

    async def __aenter__(self) -> Self:
        self._bind_loop()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.close()

    def _bind_loop(self) -> None:
        # asyncio objects can only be made once a loop is running
        loop = asyncio.get_running_loop()
        self.loop = self.http.loop = self._connection.loop = loop
        self._ready = asyncio.Event()

    def _set_ready(self) -> None:
        self._ready.set()

    # cache

    @property
    def user(self) -> Optional[ClientUser]:
        """Optional[:class:`ClientUser`]: The logged in user, if any."""
        return self._connection.user

    @property
    def guilds(self) -> List[Guild]:
        """List[:class:`Guild`]: Every cached guild, including ones still being set up."""
        return self._connection.guilds

    @property
    def users(self) -> List[User]:
        return self._connection.users

    def get_guild(self, id: int, /) -> Optional[Guild]:
        return self._connection._get_guild(id)

    def get_user(self, id: int, /) -> Optional[User]:
        return self._connection.get_user(id)

    def get_channel(self, id: int, /) -> Optional[GuildChannel]:
        return self._connection.get_channel(id)

    def get_role(self, id: int, /) -> Optional[Role]:
        return self._connection.get_role(id)

    @property
    def latency(self) -> float:
        """:class:`float`: Heartbeat round trip in seconds, ``nan`` when not connected."""
        return float('nan') if self.ws is None else self.ws.latency

    def is_ready(self) -> bool:
        return self._ready is not MISSING and self._ready.is_set()

    def is_closed(self) -> bool:
        return self._closing_task is not None

    async def wait_until_ready(self) -> None:
        """|coro|

        Waits for READY and for the guilds it announced to be set up.

        Raises
        -------
        RuntimeError
            The client was not started or entered as a context manager.
        """
        if self._ready is MISSING:
            raise RuntimeError('Client has no running loop yet, use login() or "async with client" first')
        await self._ready.wait()

    # events

    def event(self, coro: Coro, /) -> Coro:
        """Registers ``coro`` as the handler for the event its name refers to.

        .. code-block:: python3

            @client.event
            async def on_guild_ready(guild):
                print(guild.name, len(guild.members))

        Raises
        --------
        TypeError
            ``coro`` is not a coroutine function.
        """
        if not asyncio.iscoroutinefunction(coro):
            raise TypeError('event registered must be a coroutine function')

        setattr(self, coro.__name__, coro)
        _log.debug('Registered event handler %s.', coro.__name__)
        return coro

    def dispatch(self, event: str, /, *args: Any, **kwargs: Any) -> None:
        handler = getattr(self, f'on_{event}', None)
        _log.debug('Dispatching %s (%s).', event, 'handled' if handler is not None else 'no handler')
        if handler is not None:
            self.loop.create_task(self._run_event(handler, event, *args, **kwargs), name=f'guildwire: on_{event}')

    async def _run_event(self, handler: Callable[..., Coroutine[Any, Any, Any]], event: str, *args: Any, **kwargs: Any) -> None:
        try:
            await handler(*args, **kwargs)
        except asyncio.CancelledError:
            pass
        except Exception:
            try:
                await self.on_error(f'on_{event}', *args, **kwargs)
            except asyncio.CancelledError:
                pass

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        """|coro|

        Called when an event handler raises. Logs the traceback by default.
        """
        _log.exception('Ignoring exception in %s', event_method)

    async def before_identify_hook(self, *, initial: bool = False) -> None:
        """|coro|

        Called before every IDENTIFY. Waits 5 seconds unless this is the
        first one, so repeated session starts stay under Discord's limit.
        """
        if not initial:
            await asyncio.sleep(5.0)

    # connection

    async def login(self, token: str) -> None:
        """|coro|

        Validates ``token`` against the API and stores the logged in user.

        Raises
        ------
        LoginFailure
            The token was rejected.
        HTTPException
            The request failed for another reason.
        """
        if not isinstance(token, str):
            raise TypeError(f'expected token to be a str, received {token.__class__.__name__} instead')

        if self.loop is MISSING:
            self._bind_loop()

        _log.info('Logging in with a static token.')
        data = await self.http.static_login(token.strip(), bot=self._connection.is_bot)
        self._connection.user = ClientUser(state=self._connection, data=data)

    async def connect(self, *, reconnect: bool = True) -> None:
        """|coro|

        Runs the gateway connection until the client is closed.

        Raises
        -------
        GatewayNotFound
            The gateway URL could not be fetched.
        ConnectionClosed
            The gateway closed the connection for good.
        """
        backoff = ExponentialBackoff()
        params: Dict[str, Any] = {'initial': True}

        while not self.is_closed():
            try:
                if 'gateway' not in params:
                    params['gateway'] = yarl.URL(await self.http.get_gateway())
                self.ws = await asyncio.wait_for(GatewaySession.connect(self, **params), timeout=60.0)
                params['initial'] = False
                while True:
                    await self.ws.poll_event()
            except ReconnectWebSocket as e:
                _log.debug('Gateway connection dropped, will %s.', e.op)
                self.dispatch('disconnect')
                params.update(self._session_params(resume=e.resume))
            except RECOVERABLE_ERRORS as exc:
                self.dispatch('disconnect')
                if self.is_closed():
                    return

                fatal = isinstance(exc, ConnectionClosed)
                if not reconnect or fatal:
                    await self.close()
                    if fatal and exc.code == 1000:  # type: ignore
                        return
                    raise

                delay = backoff.delay()
                _log.exception('Gateway connection failed. Reconnecting in %.2fs.', delay)
                await asyncio.sleep(delay)
                # a stale session is invalidated by the gateway, which makes us IDENTIFY
                params.update(self._session_params(resume=True))

    def _session_params(self, *, resume: bool) -> Dict[str, Any]:
        ws = self.ws
        if ws is None:
            return {'resume': False}

        params: Dict[str, Any] = {'resume': resume, 'session_id': ws.session_id, 'sequence': ws.sequence}
        params['gateway'] = ws.gateway if resume else GatewaySession.DEFAULT_GATEWAY
        return params

    async def start(self, token: str, *, reconnect: bool = True) -> None:
        """|coro|

        :meth:`login` followed by :meth:`connect`.
        """
        await self.login(token)
        await self.connect(reconnect=reconnect)

    def run(
        self,
        token: str,
        *,
        reconnect: bool = True,
        log_handler: Optional[logging.Handler] = MISSING,
        log_level: int = MISSING,
    ) -> None:
        """Blocks while running :meth:`start` in a new event loop.

        Logging is set up with :func:`utils.setup_logging` unless
        ``log_handler`` is ``None``.
        """

        async def runner() -> None:
            async with self:
                await self.start(token, reconnect=reconnect)

        if log_handler is not None:
            utils.setup_logging(handler=log_handler, level=log_level)

        try:
            asyncio.run(runner())
        except KeyboardInterrupt:
            # asyncio.run already cleaned up
            return

    async def close(self) -> None:
        """|coro|

        Closes the gateway connection and the REST session.
        """
        if self._closing_task is None:
            self._closing_task = asyncio.create_task(self._close())
        await self._closing_task

    async def _close(self) -> None:
        if self.ws is not None and self.ws.open:
            await self.ws.close(code=1000)

        await self.http.close()
        if self._ready is not MISSING:
            self._ready.clear()

    def clear(self) -> None:
        """Resets the client after :meth:`close` so it can be started again."""
        self._closing_task = None
        if self._ready is not MISSING:
            self._ready.clear()
        self._connection.clear()
        self.http.clear()

    # REST

    async def fetch_guild(self, guild_id: int, /) -> Guild:
        """|coro|

        Fetches a guild over REST.

        A cached guild is updated in place and returned. For a guild that is
        not cached a detached :class:`Guild` with only its top level
        attributes is returned and nothing is cached.

        Raises
        ------
        Forbidden
            The guild is not accessible.
        HTTPException
            The request failed.
        """
        data = await self.http.get_guild(guild_id)
        guild = self._connection._get_guild(guild_id)
        if guild is None:
            return Guild(data=data, state=self._connection)

        guild._from_data(data)
        return guild
