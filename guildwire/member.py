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

import datetime
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from . import utils
from .utils import SnowflakeList

if TYPE_CHECKING:
    from .channel import GuildChannel
    from .guild import Guild
    from .role import Role
    from .state import ConnectionState
    from .user import User

__all__ = (
    'VoiceState',
    'Member',
)

# boolean voice flags, all default to False when absent
_VOICE_FLAGS = ('deaf', 'mute', 'self_deaf', 'self_mute', 'self_stream', 'self_video', 'suppress')


class VoiceState:
    """The voice connection of a single member.

    A voice state only exists while its member sits in a voice channel.
    Leaving the channel drops the state from the guild instead of
    keeping one with no channel.

    Attributes
    ------------
    channel: :class:`GuildChannel`
        The voice channel the member is connected to.
    session_id: Optional[:class:`str`]
        The voice session this state belongs to.
    deaf: :class:`bool`
        Server deafened.
    mute: :class:`bool`
        Server muted.
    self_deaf: :class:`bool`
        Deafened by the member themselves.
    self_mute: :class:`bool`
        Muted by the member themselves.
    self_stream: :class:`bool`
        Sharing their screen.
    self_video: :class:`bool`
        Camera turned on.
    suppress: :class:`bool`
        Not allowed to speak in a stage channel.
    """

    __slots__ = ('channel', 'session_id') + _VOICE_FLAGS

    def __init__(self, *, data: Dict[str, Any], channel: Optional[GuildChannel] = None):
        self.session_id: Optional[str] = data.get('session_id')
        self._update(data, channel)

    def _update(self, data: Dict[str, Any], channel: Optional[GuildChannel]) -> None:
        for flag in _VOICE_FLAGS:
            setattr(self, flag, bool(data.get(flag, False)))
        self.channel: Optional[GuildChannel] = channel

    def __repr__(self) -> str:
        flags = ','.join(flag for flag in _VOICE_FLAGS if getattr(self, flag))
        return f'<VoiceState channel={self.channel!r} session_id={self.session_id!r} flags={flags or None}>'


class Member:
    """A user as seen from inside one :class:`Guild`.

    The member only points at the cached :class:`User` and :class:`Guild`.
    Name, avatar and bot flag are read through the user, so a user update
    is visible from every guild the user shares.

    .. container:: operations

        .. describe:: x == y

            Same user in the same guild.

        .. describe:: hash(x)

            Hash of the wrapped user.

        .. describe:: str(x)

            The user's ``name#discriminator``.

    Attributes
    ----------
    guild: :class:`Guild`
        Owning guild.
    nick: Optional[:class:`str`]
        Nickname within the guild, ``None`` when unset.
    joined_at: Optional[:class:`datetime.datetime`]
        When the member joined, in UTC.
    pending: :class:`bool`
        Still has to pass membership screening.
    deaf: :class:`bool`
        Server deafened.
    mute: :class:`bool`
        Server muted.
    """

    __slots__ = ('guild', 'nick', 'joined_at', 'pending', 'deaf', 'mute', '_roles', '_user', '_state')

    def __init__(self, *, data: Dict[str, Any], guild: Guild, user: User, state: ConnectionState):
        self._state = state
        self._user = user
        self.guild = guild
        self.nick: Optional[str] = None
        self._roles = SnowflakeList(())
        self._update(data)

    def __str__(self) -> str:
        return str(self._user)

    def __repr__(self) -> str:
        return f'<Member id={self.id} name={self._user.name!r} nick={self.nick!r} guild_id={self.guild.id}>'

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Member):
            return NotImplemented
        return (self.id, self.guild.id) == (other.id, other.guild.id)

    def __hash__(self) -> int:
        return hash(self._user)

    def _update(self, data: Dict[str, Any]) -> None:
        # partial updates leave out the nick when it did not change
        if 'nick' in data:
            self.nick = data['nick']

        self.joined_at: Optional[datetime.datetime] = utils.parse_time(data.get('joined_at'))
        self.pending: bool = data.get('pending', False)
        self.deaf: bool = data.get('deaf', False)
        self.mute: bool = data.get('mute', False)

    def _set_roles(self, role_ids: Iterable[int]) -> None:
        self._roles = SnowflakeList(role_ids)

    @property
    def id(self) -> int:
        """:class:`int`: Same as the user's ID."""
        return self._user.id

    @property
    def user(self) -> User:
        """:class:`User`: The shared user behind this member."""
        return self._user

    @property
    def name(self) -> str:
        return self._user.name

    @property
    def bot(self) -> bool:
        return self._user.bot

    @property
    def display_name(self) -> str:
        """:class:`str`: The nickname, falling back to the user's own display name."""
        return self.nick or self._user.display_name

    @property
    def mention(self) -> str:
        return f'<@{self.id}>'

    @property
    def roles(self) -> List[Role]:
        """List[:class:`Role`]: The member's roles, lowest first.

        ``@everyone`` always leads the list. IDs that no longer resolve
        to a cached role are skipped.
        """
        guild = self.guild
        found = [role for role in map(guild.get_role, self._roles) if role is not None]
        everyone = guild.default_role
        if everyone is not None and everyone not in found:
            found.append(everyone)
        return sorted(found, key=lambda role: role._hierarchy_key())

    @property
    def top_role(self) -> Optional[Role]:
        roles = self.roles
        return roles[-1] if roles else None

    @property
    def voice(self) -> Optional[VoiceState]:
        """Optional[:class:`VoiceState`]: The voice connection, if the member is in a voice channel."""
        return self.guild._voice_states.get(self.id)

    async def kick(self, *, reason: Optional[str] = None) -> None:
        """|coro|

        Removes the member from the guild. The cache is updated once the
        matching ``GUILD_MEMBER_REMOVE`` event arrives.

        Raises
        -------
        GuildUnavailable
            The guild is unavailable.
        Forbidden
            Missing the permission to kick members.
        HTTPException
            The request failed.
        """
        self.guild._check_available()
        await self._state.http.kick(self.id, self.guild.id, reason=reason)
