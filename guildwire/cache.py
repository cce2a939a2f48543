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

import logging
import threading
from typing import Any, Dict, Generic, Iterator, List, Optional, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Protocol

    from .channel import GuildChannel
    from .guild import Guild
    from .role import Role
    from .user import User

    class _Snowflake(Protocol):
        id: int

    class _Positioned(Protocol):
        id: int
        position: int

__all__ = (
    'SnowflakeCache',
    'SortedSnowflakeCache',
    'EntityCache',
)

_log = logging.getLogger(__name__)

T = TypeVar('T', bound='_Snowflake')


class SnowflakeCache(Generic[T]):
    """A keyed container of entities indexed by their snowflake ID.

    Mutations and snapshots are taken under a re-entrant lock so that
    readers on other threads never observe a half-applied change. The
    lock may be shared between containers so that a cascading removal
    is atomic across all of them.
    """

    __slots__ = ('_items', '_lock')

    def __init__(self, *, lock: Optional[threading.RLock] = None):
        self._items: Dict[int, T] = {}
        self._lock: threading.RLock = lock or threading.RLock()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} len={len(self._items)}>'

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, id: object) -> bool:
        return id in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self.values())

    def __getitem__(self, id: int) -> T:
        return self._items[id]

    def get(self, id: Optional[int], /) -> Optional[T]:
        if id is None:
            return None
        return self._items.get(id)

    def add(self, item: T) -> T:
        with self._lock:
            self._items[item.id] = item
        return item

    def remove(self, id: int, /) -> Optional[T]:
        with self._lock:
            return self._items.pop(id, None)

    def values(self) -> List[T]:
        with self._lock:
            return list(self._items.values())

    def ids(self) -> List[int]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


P = TypeVar('P', bound='_Positioned')


class SortedSnowflakeCache(SnowflakeCache[P]):
    """A :class:`SnowflakeCache` whose entities carry a ``position``.

    The order is not maintained on mutation. :meth:`sorted` computes the
    ``(position, id)`` order every time it is called.
    """

    __slots__ = ()

    def sorted(self) -> List[P]:
        return sorted(self.values(), key=lambda e: (e.position, e.id))


class EntityCache:
    """The global containers shared by a single connection.

    Guild-scoped containers live on each :class:`Guild`. They are created
    with this cache's lock so that :meth:`remove_guild` can detach a guild
    from every index in one step.

    Attributes
    -----------
    guilds: :class:`SnowflakeCache`
        Guild ID to :class:`Guild`.
    users: :class:`SnowflakeCache`
        User ID to :class:`User`.
    channels: :class:`SnowflakeCache`
        Secondary index of every cached guild channel.
    roles: :class:`SnowflakeCache`
        Secondary index of every cached role.
    """

    __slots__ = ('lock', 'guilds', 'users', 'channels', 'roles')

    def __init__(self) -> None:
        self.lock: threading.RLock = threading.RLock()
        self.guilds: SnowflakeCache[Guild] = SnowflakeCache(lock=self.lock)
        self.users: SnowflakeCache[User] = SnowflakeCache(lock=self.lock)
        self.channels: SnowflakeCache[GuildChannel] = SnowflakeCache(lock=self.lock)
        self.roles: SnowflakeCache[Role] = SnowflakeCache(lock=self.lock)

    def __repr__(self) -> str:
        return (
            f'<EntityCache guilds={len(self.guilds)} users={len(self.users)} '
            f'channels={len(self.channels)} roles={len(self.roles)}>'
        )

    def clear(self) -> None:
        with self.lock:
            self.guilds.clear()
            self.users.clear()
            self.channels.clear()
            self.roles.clear()

    def add_channel(self, channel: GuildChannel) -> None:
        with self.lock:
            channel.guild._channels.add(channel)
            self.channels.add(channel)

    def remove_channel(self, channel: GuildChannel) -> None:
        with self.lock:
            channel.guild._channels.remove(channel.id)
            self.channels.remove(channel.id)

    def add_role(self, role: Role) -> None:
        with self.lock:
            role.guild._roles.add(role)
            self.roles.add(role)

    def remove_role(self, role: Role) -> None:
        with self.lock:
            role.guild._roles.remove(role.id)
            self.roles.remove(role.id)

    def remove_guild(self, guild: Guild) -> None:
        """Removes a guild along with all of its channels, roles and members."""
        with self.lock:
            self.guilds.remove(guild.id)
            for channel_id in guild._channels.ids():
                self.channels.remove(channel_id)
            for role_id in guild._roles.ids():
                self.roles.remove(role_id)

            guild._channels.clear()
            guild._roles.clear()
            guild._members.clear()
            guild._voice_states.clear()

        _log.debug('Removed guild %s and its entities from the cache.', guild.id)

    def collect_users(self, *, keep: Any = ()) -> int:
        """Drops every user that no cached guild has as a member.

        Users whose IDs are in ``keep`` are never dropped.

        Returns the number of users removed.
        """
        with self.lock:
            referenced = set(keep)
            for guild in self.guilds.values():
                referenced.update(guild._members.ids())

            stale = [user_id for user_id in self.users.ids() if user_id not in referenced]
            for user_id in stale:
                self.users.remove(user_id)

        if stale:
            _log.debug('Dropped %d users that no longer share a guild.', len(stale))
        return len(stale)
