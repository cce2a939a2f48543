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

import array
import datetime
import json
import logging
import os
import secrets
import sys
from bisect import bisect_left
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol, TypeVar, TYPE_CHECKING

try:
    import orjson  # type: ignore
except ModuleNotFoundError:
    HAS_ORJSON = False
else:
    HAS_ORJSON = True

__all__ = (
    'MISSING',
    'snowflake_time',
    'parse_time',
    'find',
    'setup_logging',
)

DISCORD_EPOCH = 1420070400000

T = TypeVar('T')


class _MissingSentinel:
    """Marks an argument or attribute that was not given, where ``None`` is a real value."""

    __slots__ = ()

    def __eq__(self, other: object) -> bool:
        return False

    def __hash__(self) -> int:
        return 0

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return '...'


MISSING: Any = _MissingSentinel()


if TYPE_CHECKING:
    from typing_extensions import Self

    class _HasHeaders(Protocol):
        headers: Mapping[str, Any]

    _SnowflakeArray = array.array[int]
else:
    _SnowflakeArray = array.array


def snowflake_time(id: int, /) -> datetime.datetime:
    """Returns the aware UTC time encoded in the top 42 bits of a snowflake."""
    millis = (id >> 22) + DISCORD_EPOCH
    return datetime.datetime.fromtimestamp(millis / 1000, tz=datetime.timezone.utc)


def parse_time(timestamp: Optional[str]) -> Optional[datetime.datetime]:
    if not timestamp:
        return None
    # fromisoformat only accepts a trailing Z from 3.11 on
    if timestamp.endswith('Z'):
        timestamp = timestamp[:-1] + '+00:00'
    return datetime.datetime.fromisoformat(timestamp)


def find(predicate: Callable[[T], Any], iterable: Iterable[T], /) -> Optional[T]:
    """Returns the first element of ``iterable`` for which ``predicate`` is truthy, or ``None``."""
    for element in iterable:
        if predicate(element):
            return element
    return None


def _get_as_snowflake(data: Mapping[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    return int(value) if value else None


if HAS_ORJSON:

    def _to_json(obj: Any) -> str:
        return orjson.dumps(obj).decode('utf-8')

    _from_json = orjson.loads  # type: ignore

else:

    def _to_json(obj: Any) -> str:
        return json.dumps(obj, separators=(',', ':'), ensure_ascii=True)

    _from_json = json.loads


def _parse_ratelimit_header(response: _HasHeaders, *, use_clock: bool = False) -> float:
    """Seconds until the bucket of ``response`` resets.

    ``X-Ratelimit-Reset-After`` is used unless ``use_clock`` is set, in which
    case the absolute ``X-Ratelimit-Reset`` is compared against the local clock.
    """
    headers = response.headers
    relative = headers.get('X-Ratelimit-Reset-After')
    if relative and not use_clock:
        return float(relative)

    reset = float(headers['X-Ratelimit-Reset'])
    return reset - datetime.datetime.now(datetime.timezone.utc).timestamp()


def _generate_nonce() -> str:
    return secrets.token_hex(8)


class SnowflakeList(_SnowflakeArray):
    """A sorted array of unsigned 64 bit IDs.

    Membership tests are a binary search, which keeps role lookups on
    members cheap without a set per member.
    """

    __slots__ = ()

    if TYPE_CHECKING:

        def __init__(self, data: Iterable[int], *, is_sorted: bool = False):
            ...

    def __new__(cls, data: Iterable[int], *, is_sorted: bool = False) -> Self:
        values = data if is_sorted else sorted(data)
        return array.array.__new__(cls, 'Q', values)  # type: ignore

    def _index(self, element: int) -> int:
        i = bisect_left(self, element)
        return i if i < len(self) and self[i] == element else -1

    def add(self, element: int) -> None:
        self.insert(bisect_left(self, element), element)

    def get(self, element: int) -> Optional[int]:
        return element if self._index(element) != -1 else None

    def has(self, element: int) -> bool:
        return self._index(element) != -1


# Logging

_RESET = '\x1b[0m'
_LEVEL_COLOURS = {
    logging.DEBUG: '\x1b[40;1m',
    logging.INFO: '\x1b[34;1m',
    logging.WARNING: '\x1b[33;1m',
    logging.ERROR: '\x1b[31m',
    logging.CRITICAL: '\x1b[41m',
}


def _supports_colour(stream: Any) -> bool:
    if 'PYCHARM_HOSTED' in os.environ or os.environ.get('TERM_PROGRAM') == 'vscode':
        return True

    isatty = getattr(stream, 'isatty', None)
    is_tty = bool(isatty and isatty())
    if sys.platform == 'win32':
        return is_tty and ('ANSICON' in os.environ or 'WT_SESSION' in os.environ)

    # docker rarely attaches a tty
    return is_tty or os.path.exists('/.dockerenv')


class _ColourFormatter(logging.Formatter):
    """Colours the level and logger name, and prints tracebacks in red."""

    def __init__(self) -> None:
        super().__init__()
        self._formatters = {
            level: logging.Formatter(
                f'\x1b[30;1m%(asctime)s{_RESET} {colour}%(levelname)-8s{_RESET} \x1b[35m%(name)s{_RESET} %(message)s',
                '%Y-%m-%d %H:%M:%S',
            )
            for level, colour in _LEVEL_COLOURS.items()
        }

    def format(self, record: logging.LogRecord) -> str:
        formatter = self._formatters.get(record.levelno, self._formatters[logging.DEBUG])
        if record.exc_info:
            record.exc_text = f'\x1b[31m{formatter.formatException(record.exc_info)}{_RESET}'
        try:
            return formatter.format(record)
        finally:
            # other handlers must not see the coloured traceback
            record.exc_text = None


def setup_logging(
    *,
    handler: logging.Handler = MISSING,
    formatter: logging.Formatter = MISSING,
    level: int = MISSING,
    root: bool = False,
) -> None:
    """Attaches a handler to the ``guildwire`` logger, or to the root logger if ``root`` is set.

    By default this is a :class:`logging.StreamHandler` at ``INFO`` with a
    coloured format when the stream is a terminal.
    """
    if handler is MISSING:
        handler = logging.StreamHandler()
    if level is MISSING:
        level = logging.INFO

    if formatter is MISSING:
        stream = getattr(handler, 'stream', None)
        if isinstance(handler, logging.StreamHandler) and _supports_colour(stream):
            formatter = _ColourFormatter()
        else:
            formatter = logging.Formatter('[{asctime}] [{levelname:<8}] {name}: {message}', '%Y-%m-%d %H:%M:%S', style='{')

    logger = logging.getLogger() if root else logging.getLogger(__name__.partition('.')[0])
    handler.setFormatter(formatter)
    logger.setLevel(level)
    logger.addHandler(handler)
