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

from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from .mixins import Hashable
from .utils import MISSING, snowflake_time

if TYPE_CHECKING:
    import datetime

    from .guild import Guild
    from .member import Member
    from .state import ConnectionState

__all__ = ('Role',)

# how each editable field is sent
_FIELD_SERIALISERS = {
    'name': str,
    'permissions': str,
    'color': int,
    'hoist': bool,
    'mentionable': bool,
}


class Role(Hashable):
    """A role of a :class:`Guild`.

    The cache keeps one :class:`Role` per ID and updates it in place, so
    a reference held across a ``GUILD_ROLE_UPDATE`` sees the new values.
    Roles order by hierarchy: ``@everyone`` first, then by ``position``
    with the older role (lower ID) ranking higher on ties.

    Attributes
    ----------
    id: :class:`int`
        The role ID. The ``@everyone`` role shares its ID with the guild.
    name: :class:`str`
        The role name.
    guild: :class:`Guild`
        The owning guild.
    permissions: :class:`int`
        Raw permission bits.
    colour: :class:`int`
        Raw RGB colour.
    hoist: :class:`bool`
        Whether members are listed separately under this role.
    position: :class:`int`
        Position in the hierarchy, ``0`` at the bottom. Several roles can
        share a position.
    managed: :class:`bool`
        Whether an integration owns the role.
    mentionable: :class:`bool`
        Whether anyone may mention the role.
    """

    __slots__ = (
        'id',
        'name',
        'permissions',
        'colour',
        'position',
        'managed',
        'mentionable',
        'hoist',
        'guild',
        '_state',
    )

    def __init__(self, *, guild: Guild, state: ConnectionState, data: Dict[str, Any]):
        self.guild: Guild = guild
        self._state: ConnectionState = state
        self.id: int = int(data['id'])
        self._update(data)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f'<Role id={self.id} name={self.name!r} position={self.position}>'

    def _hierarchy_key(self) -> Tuple[bool, int, int]:
        return (not self.is_default(), self.position, -self.id)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        if self.guild.id != other.guild.id:
            raise RuntimeError('roles from different guilds cannot be compared')
        return self._hierarchy_key() < other._hierarchy_key()

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return other < self

    def _update(self, data: Dict[str, Any]) -> None:
        self.name: str = data['name']
        self.permissions: int = int(data.get('permissions', 0))
        self.position: int = data.get('position', 0)
        self.colour: int = data.get('color', 0)
        self.hoist: bool = data.get('hoist', False)
        self.managed: bool = data.get('managed', False)
        self.mentionable: bool = data.get('mentionable', False)

    def is_default(self) -> bool:
        """:class:`bool`: Whether this is the ``@everyone`` role."""
        return self.id == self.guild.id

    @property
    def created_at(self) -> datetime.datetime:
        return snowflake_time(self.id)

    @property
    def mention(self) -> str:
        return '@everyone' if self.is_default() else f'<@&{self.id}>'

    @property
    def members(self) -> List[Member]:
        """List[:class:`Member`]: Cached members holding this role."""
        members = self.guild.members
        if self.is_default():
            return members
        return [m for m in members if m._roles.has(self.id)]

    async def edit(
        self,
        *,
        name: str = MISSING,
        permissions: int = MISSING,
        colour: int = MISSING,
        hoist: bool = MISSING,
        mentionable: bool = MISSING,
        reason: Optional[str] = None,
    ) -> Role:
        """|coro|

        Edits the role and applies the API's answer to this same object,
        which is returned.

        Raises
        -------
        GuildUnavailable
            The guild is in an outage.
        Forbidden
            Missing permissions to edit the role.
        HTTPException
            The edit failed.
        """
        self.guild._check_available()

        given = {'name': name, 'permissions': permissions, 'color': colour, 'hoist': hoist, 'mentionable': mentionable}
        payload = {key: _FIELD_SERIALISERS[key](value) for key, value in given.items() if value is not MISSING}

        data = await self._state.http.edit_role(self.guild.id, self.id, reason=reason, **payload)
        return self._state.builder.create_role(self.guild, data)

    async def delete(self, *, reason: Optional[str] = None) -> None:
        """|coro|

        Deletes the role. It is dropped from the cache once the API confirms.

        Raises
        --------
        GuildUnavailable
            The guild is in an outage.
        Forbidden
            Missing permissions to delete the role.
        HTTPException
            The deletion failed.
        """
        self.guild._check_available()
        await self._state.http.delete_role(self.guild.id, self.id, reason=reason)
        self._state.cache.remove_role(self)
