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

from typing import Any, Dict, Iterator, Optional, Tuple, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from aiohttp import ClientResponse, ClientWebSocketResponse

__all__ = (
    'GuildwireException',
    'ClientException',
    'GatewayNotFound',
    'HTTPException',
    'RateLimited',
    'Forbidden',
    'NotFound',
    'ServerError',
    'NetworkError',
    'RequestTimeout',
    'InvalidData',
    'GuildUnavailable',
    'LoginFailure',
    'ConnectionClosed',
)


class GuildwireException(Exception):
    """Base class of every exception raised by guildwire."""

    __slots__ = ()


class ClientException(GuildwireException):
    """An operation was rejected before reaching Discord, usually because of bad input."""

    __slots__ = ()


class GatewayNotFound(GuildwireException):
    """``GET /gateway`` did not return a usable URL."""

    def __init__(self) -> None:
        super().__init__('The gateway to connect to was not found.')


def _walk_form_errors(errors: Dict[str, Any], path: str = '') -> Iterator[Tuple[str, str]]:
    # {"name": {"_errors": [{"message": ...}]}} -> ("name", "...")
    for key, value in errors.items():
        if key == '_errors':
            yield (path or 'miscellaneous', ' '.join(e.get('message', '') for e in value))
            continue

        child = f'{path}.{key}' if path else key
        if isinstance(value, dict):
            yield from _walk_form_errors(value, child)
        else:
            yield (child, value)


class HTTPException(GuildwireException):
    """The API answered a request with an error status.

    Form validation errors are flattened into the message as one
    ``In <field path>: <message>`` line per field.

    Attributes
    ------------
    response: :class:`aiohttp.ClientResponse`
        The failed response.
    status: :class:`int`
        The HTTP status.
    code: :class:`int`
        Discord's JSON error code, ``0`` if there was none.
    text: :class:`str`
        The error message, possibly empty.
    json: :class:`dict`
        The error body, or a stand-in built from ``text``.
    """

    def __init__(self, response: ClientResponse, message: Optional[Union[str, Dict[str, Any]]]):
        self.response: ClientResponse = response
        self.status: int = response.status

        if isinstance(message, dict):
            self.json: Dict[str, Any] = message
            self.code: int = message.get('code', 0)
            lines = [message.get('message', '')]
            lines.extend(f'In {path}: {text}' for path, text in _walk_form_errors(message.get('errors') or {}))
            self.text: str = '\n'.join(lines)
        else:
            self.code = 0
            self.text = message or ''
            self.json = {'code': 0, 'message': self.text}

        summary = f'{response.status} {response.reason} (error code: {self.code})'
        super().__init__(f'{summary}: {self.text}' if self.text else summary)


class RateLimited(GuildwireException):
    """A 429 arrived that was not a Discord rate limit.

    Typically an upstream proxy or Cloudflare blocking the address. The
    request is failed instead of retried.

    Attributes
    ------------
    retry_after: :class:`float`
        Seconds the remote asked to wait.
    """

    __slots__ = ('retry_after',)

    def __init__(self, retry_after: float):
        self.retry_after: float = retry_after
        super().__init__(f'Too many requests. Retry in {retry_after:.2f} seconds.')


class Forbidden(HTTPException):
    """403."""

    __slots__ = ()


class NotFound(HTTPException):
    """404."""

    __slots__ = ()


class ServerError(HTTPException):
    """5xx, after any configured retries."""

    __slots__ = ()


class NetworkError(GuildwireException):
    """The request got no response at all.

    Attributes
    -----------
    original: :class:`BaseException`
        The transport error, for example :exc:`asyncio.TimeoutError`.
    """

    def __init__(self, original: BaseException):
        self.original: BaseException = original
        super().__init__(f'Request failed without a response: {original!r}')


class RequestTimeout(GuildwireException):
    """The request's deadline passed while it waited in its rate limit queue.

    Nothing was sent.
    """

    __slots__ = ()


class InvalidData(ClientException):
    """A payload from Discord referenced something that does not exist."""

    __slots__ = ()


class GuildUnavailable(ClientException):
    """The target guild is in an outage.

    Attributes
    -----------
    guild_id: :class:`int`
        The unavailable guild.
    """

    __slots__ = ('guild_id',)

    def __init__(self, guild_id: int):
        self.guild_id: int = guild_id
        super().__init__(f'Guild {guild_id} is unavailable')


class LoginFailure(ClientException):
    """The token was rejected by :meth:`Client.login`."""

    __slots__ = ()


class ConnectionClosed(ClientException):
    """The gateway closed with a code that does not allow reconnecting.

    Attributes
    -----------
    code: :class:`int`
        The close code, ``-1`` if unknown.
    """

    __slots__ = ('code',)

    def __init__(self, socket: ClientWebSocketResponse, *, code: Optional[int] = None):
        self.code: int = code or socket.close_code or -1
        super().__init__(f'WebSocket closed with {self.code}')
