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
from typing import Any, ClassVar, Dict, Optional, Tuple, Union, TYPE_CHECKING
from urllib.parse import quote as _uriquote

import aiohttp

from . import __version__, utils
from .errors import GatewayNotFound, HTTPException, LoginFailure, NetworkError
from .ratelimit import RateLimiter
from .utils import MISSING

if TYPE_CHECKING:
    from .ratelimit import Bucket, Request

    Snowflake = Union[str, int]

_log = logging.getLogger(__name__)

__all__ = (
    'Route',
    'HTTPClient',
)

INTERNAL_API_VERSION = 10

# path parameters that scope a rate limit bucket
MAJOR_PARAMETERS = ('channel_id', 'guild_id', 'webhook_id')


async def json_or_text(response: aiohttp.ClientResponse) -> Union[Dict[str, Any], str]:
    text = await response.text(encoding='utf-8')
    # proxies in front of the API may answer without a content type
    if response.headers.get('content-type') == 'application/json':
        return utils._from_json(text)
    return text


class Route:
    """An endpoint with its path parameters filled in.

    ``key`` is the unformatted ``METHOD path`` the rate limiter maps to a
    bucket hash, ``major_parameters`` is the part of the bucket id that
    keeps e.g. two guilds on the same endpoint apart.
    """

    BASE: ClassVar[str] = f'https://discord.com/api/v{INTERNAL_API_VERSION}'

    def __init__(self, method: str, path: str, **parameters: Any) -> None:
        self.method: str = method
        self.path: str = path
        quoted = {k: _uriquote(v) if isinstance(v, str) else v for k, v in parameters.items()}
        self.url: str = (self.BASE + path).format_map(quoted)
        self.major: Tuple[Snowflake, ...] = tuple(parameters[k] for k in MAJOR_PARAMETERS if parameters.get(k) is not None)

    def __repr__(self) -> str:
        return f'<Route key={self.key!r} major_parameters={self.major_parameters!r}>'

    @property
    def key(self) -> str:
        return f'{self.method} {self.path}'

    @property
    def major_parameters(self) -> str:
        return '+'.join(map(str, self.major))


class HTTPClient:
    """Sends requests to the Discord REST API.

    Requests are handed to a :class:`RateLimiter`, which calls back into
    :meth:`_perform` once the request's bucket lets it through.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        connector: Optional[aiohttp.BaseConnector] = None,
        *,
        proxy: Optional[str] = None,
        proxy_auth: Optional[aiohttp.BasicAuth] = None,
        unsync_clock: bool = True,
        bucket_cleanup_interval: float = 30.0,
        max_server_retries: int = 0,
        http_trace: Optional[aiohttp.TraceConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.loop: asyncio.AbstractEventLoop = loop
        self.connector: aiohttp.BaseConnector = connector or MISSING
        self.__session: aiohttp.ClientSession = session or MISSING
        self.token: Optional[str] = None
        self.bot_token: bool = True
        self.proxy: Optional[str] = proxy
        self.proxy_auth: Optional[aiohttp.BasicAuth] = proxy_auth
        self.http_trace: Optional[aiohttp.TraceConfig] = http_trace
        self.use_clock: bool = not unsync_clock
        self.ratelimiter: RateLimiter = RateLimiter(
            self._perform,
            use_clock=self.use_clock,
            cleanup_interval=bucket_cleanup_interval,
            max_server_retries=max_server_retries,
        )

        python = '{0[0]}.{0[1]}'.format(sys.version_info)
        self.user_agent: str = (
            f'GuildwireClient (https://github.com/guildwire/guildwire {__version__}) '
            f'Python/{python} aiohttp/{aiohttp.__version__}'
        )

    def clear(self) -> None:
        if self.__session and self.__session.closed:
            self.__session = MISSING

    def _ensure_session(self) -> None:
        if self.__session:
            return
        if self.connector is MISSING:
            self.connector = aiohttp.TCPConnector(limit=0)
        traces = [self.http_trace] if self.http_trace is not None else None
        self.__session = aiohttp.ClientSession(connector=self.connector, trace_configs=traces)

    async def ws_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        self._ensure_session()
        return await self.__session.ws_connect(
            url,
            proxy=self.proxy,
            proxy_auth=self.proxy_auth,
            max_msg_size=0,
            timeout=30.0,
            autoclose=False,
            headers={'User-Agent': self.user_agent},
        )

    def get_rate_limit(self, route: Route) -> Optional[Bucket]:
        """Returns the bucket ``route`` is queued under right now."""
        return self.ratelimiter.get_rate_limit(route)

    async def request(self, route: Route, *, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        """|coro|

        Queues a request and returns its decoded body.

        With ``timeout`` the request may wait at most that many seconds in
        its bucket's queue. If its turn comes later it fails with
        :exc:`RequestTimeout` and is never sent.
        """
        deadline = self.loop.time() + timeout if timeout is not None else None
        return await self.ratelimiter.submit(route, deadline=deadline, **kwargs)

    def _headers(self, reason: Optional[str], has_body: bool) -> Dict[str, str]:
        headers = {'User-Agent': self.user_agent}
        if self.token is not None:
            headers['Authorization'] = f'Bot {self.token}' if self.bot_token else self.token
        if reason:
            headers['X-Audit-Log-Reason'] = _uriquote(reason, safe='/ ')
        if has_body:
            headers['Content-Type'] = 'application/json'
        return headers

    async def _perform(self, request: Request) -> Tuple[aiohttp.ClientResponse, Union[Dict[str, Any], str]]:
        route = request.route
        kwargs = dict(request.kwargs)
        payload = kwargs.pop('json', None)
        kwargs['headers'] = self._headers(kwargs.pop('reason', None), payload is not None)
        if payload is not None:
            kwargs['data'] = utils._to_json(payload)
        if self.proxy is not None:
            kwargs['proxy'] = self.proxy
        if self.proxy_auth is not None:
            kwargs['proxy_auth'] = self.proxy_auth

        try:
            async with self.__session.request(route.method, route.url, **kwargs) as response:
                _log.debug('%s %s with %s has returned %s.', route.method, route.url, kwargs.get('data'), response.status)
                data = await json_or_text(response)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            _log.debug('%s %s got no response: %r.', route.method, route.url, exc)
            raise NetworkError(exc) from exc

        return response, data

    async def close(self) -> None:
        await self.ratelimiter.close()
        if self.__session:
            await self.__session.close()

    # Login

    async def static_login(self, token: str, *, bot: bool = True) -> Dict[str, Any]:
        """Stores the token and checks it with ``GET /users/@me``.

        The previous token is restored if the check fails.
        """
        previous = (self.token, self.bot_token)
        self.token, self.bot_token = token, bot
        self._ensure_session()

        try:
            return await self.get_me()
        except HTTPException as exc:
            self.token, self.bot_token = previous
            if exc.status == 401:
                raise LoginFailure('Improper token has been passed.') from exc
            raise

    def get_me(self) -> Any:
        return self.request(Route('GET', '/users/@me'))

    async def get_gateway(self) -> str:
        try:
            data = await self.request(Route('GET', '/gateway'))
        except HTTPException as exc:
            raise GatewayNotFound() from exc
        return f'{data["url"]}?encoding=json&v={INTERNAL_API_VERSION}&compress=zlib-stream'

    # Guilds

    def get_guild(self, guild_id: Snowflake, *, with_counts: bool = True) -> Any:
        route = Route('GET', '/guilds/{guild_id}', guild_id=guild_id)
        return self.request(route, params={'with_counts': int(with_counts)})

    def get_member(self, guild_id: Snowflake, member_id: Snowflake) -> Any:
        return self.request(Route('GET', '/guilds/{guild_id}/members/{member_id}', guild_id=guild_id, member_id=member_id))

    def kick(self, user_id: Snowflake, guild_id: Snowflake, reason: Optional[str] = None) -> Any:
        route = Route('DELETE', '/guilds/{guild_id}/members/{user_id}', guild_id=guild_id, user_id=user_id)
        return self.request(route, reason=reason)

    def edit_role(self, guild_id: Snowflake, role_id: Snowflake, *, reason: Optional[str] = None, **fields: Any) -> Any:
        route = Route('PATCH', '/guilds/{guild_id}/roles/{role_id}', guild_id=guild_id, role_id=role_id)
        return self.request(route, json=_only(fields, ROLE_FIELDS), reason=reason)

    def delete_role(self, guild_id: Snowflake, role_id: Snowflake, *, reason: Optional[str] = None) -> Any:
        route = Route('DELETE', '/guilds/{guild_id}/roles/{role_id}', guild_id=guild_id, role_id=role_id)
        return self.request(route, reason=reason)

    # Channels

    def edit_channel(self, channel_id: Snowflake, *, reason: Optional[str] = None, **fields: Any) -> Any:
        route = Route('PATCH', '/channels/{channel_id}', channel_id=channel_id)
        return self.request(route, json=_only(fields, CHANNEL_FIELDS), reason=reason)

    def send_message(self, channel_id: Snowflake, *, content: str) -> Any:
        route = Route('POST', '/channels/{channel_id}/messages', channel_id=channel_id)
        return self.request(route, json={'content': content, 'nonce': utils._generate_nonce()})


ROLE_FIELDS = frozenset(('name', 'permissions', 'color', 'hoist', 'mentionable'))
CHANNEL_FIELDS = frozenset(
    ('name', 'parent_id', 'permission_overwrites', 'topic', 'position', 'nsfw', 'rate_limit_per_user', 'bitrate', 'user_limit')
)


def _only(fields: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if k in allowed}
