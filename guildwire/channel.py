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

from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

from . import utils
from .enums import ChannelType, OverwriteType, try_enum
from .errors import ClientException
from .mixins import Hashable
from .utils import MISSING

if TYPE_CHECKING:
    import datetime

    from .guild import Guild
    from .member import Member
    from .role import Role
    from .state import ConnectionState

__all__ = (
    'PermissionOverwrite',
    'GuildChannel',
)

TEXT_TYPES = (ChannelType.text, ChannelType.news, ChannelType.forum)
VOICE_TYPES = (ChannelType.voice, ChannelType.stage_voice)

# keyword argument of GuildChannel.edit -> JSON key
_EDIT_FIELDS = {
    'name': 'name',
    'position': 'position',
    'topic': 'topic',
    'nsfw': 'nsfw',
    'category_id': 'parent_id',
}


class PermissionOverwrite:
    """Allow and deny bits a channel sets for one role or member.

    Overwrites are only built once the guild's roles and members are all
    cached, so :attr:`target` resolves for every kept overwrite.

    Attributes
    -----------
    id: :class:`int`
        ID of the role or member.
    type: :class:`OverwriteType`
        What :attr:`id` refers to.
    allow: :class:`int`
        Permission bits granted.
    deny: :class:`int`
        Permission bits revoked.
    """

    __slots__ = ('channel', 'id', 'type', 'allow', 'deny')

    def __init__(self, *, channel: GuildChannel, data: Dict[str, Any]) -> None:
        self.channel = channel
        self.id = int(data['id'])
        self.type: OverwriteType = try_enum(OverwriteType, data['type'])
        self.allow = int(data.get('allow') or 0)
        self.deny = int(data.get('deny') or 0)

    def __repr__(self) -> str:
        return f'<PermissionOverwrite {self.type.name}={self.id} allow={self.allow:#x} deny={self.deny:#x}>'

    def _asdict(self) -> Dict[str, Any]:
        # bit fields travel as strings
        return {'id': self.id, 'type': self.type.value, 'allow': str(self.allow), 'deny': str(self.deny)}

    def is_role(self) -> bool:
        return self.type is OverwriteType.role

    def is_member(self) -> bool:
        return self.type is OverwriteType.member

    @property
    def target(self) -> Optional[Union[Role, Member]]:
        guild = self.channel.guild
        return guild.get_role(self.id) if self.is_role() else guild.get_member(self.id)


class GuildChannel(Hashable):
    """One channel of a guild, whatever its :attr:`type`.

    Text only and voice only fields are present on every channel and keep
    their zero values where they do not apply.

    Attributes
    -----------
    id: :class:`int`
        Snowflake of the channel.
    guild: :class:`Guild`
        Owning guild.
    type: :class:`ChannelType`
        Kind of channel.
    name: :class:`str`
        Channel name.
    position: :class:`int`
        Sort key in the channel list, lower is higher up.
    category_id: Optional[:class:`int`]
        Parent category, if any.
    nsfw: :class:`bool`
        Age restricted.
    topic: Optional[:class:`str`]
        Text channels only.
    slowmode_delay: :class:`int`
        Seconds between messages per member. Text channels only.
    bitrate: :class:`int`
        Bits per second. Voice channels only.
    user_limit: :class:`int`
        Member cap, 0 for none. Voice channels only.
    """

    __slots__ = (
        'id',
        'guild',
        'type',
        'name',
        'position',
        'category_id',
        'nsfw',
        'topic',
        'slowmode_delay',
        'bitrate',
        'user_limit',
        '_overwrites',
        '_state',
    )

    def __init__(self, *, state: ConnectionState, guild: Guild, data: Dict[str, Any]):
        self._state = state
        self.guild = guild
        self.id = int(data['id'])
        self._overwrites: List[PermissionOverwrite] = []
        self._update(data)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f'<GuildChannel id={self.id} name={self.name!r} type={self.type} position={self.position}>'

    def _update(self, data: Dict[str, Any]) -> None:
        self.type: ChannelType = try_enum(ChannelType, data['type'])
        self.name: str = data.get('name', '')
        self.position: int = data.get('position', 0)
        self.category_id: Optional[int] = utils._get_as_snowflake(data, 'parent_id')
        self.nsfw: bool = data.get('nsfw', False)
        self.topic: Optional[str] = data.get('topic')
        self.slowmode_delay: int = data.get('rate_limit_per_user') or 0
        self.bitrate: int = data.get('bitrate') or 0
        self.user_limit: int = data.get('user_limit') or 0

    def _set_overwrites(self, overwrites: List[PermissionOverwrite]) -> None:
        # @everyone first, the rest keep the payload order
        everyone = self.guild.id
        overwrites.sort(key=lambda o: not (o.is_role() and o.id == everyone))
        self._overwrites = overwrites

    def is_text(self) -> bool:
        return self.type in TEXT_TYPES

    def is_voice(self) -> bool:
        return self.type in VOICE_TYPES

    def is_category(self) -> bool:
        return self.type is ChannelType.category

    @property
    def mention(self) -> str:
        return f'<#{self.id}>'

    @property
    def created_at(self) -> datetime.datetime:
        return utils.snowflake_time(self.id)

    @property
    def category(self) -> Optional[GuildChannel]:
        return self.guild.get_channel(self.category_id)

    @property
    def channels(self) -> List[GuildChannel]:
        """List[:class:`GuildChannel`]: Children of a category. Empty for any other kind."""
        if not self.is_category():
            return []
        return [child for child in self.guild.channels if child.category_id == self.id]

    @property
    def overwrites(self) -> List[PermissionOverwrite]:
        return list(self._overwrites)

    def overwrites_for(self, obj: Union[Role, Member]) -> Optional[PermissionOverwrite]:
        return utils.find(lambda o: o.id == obj.id, self._overwrites)

    @property
    def voice_members(self) -> List[Member]:
        """List[:class:`Member`]: Members connected to this voice channel right now."""
        if not self.is_voice():
            return []

        guild = self.guild
        connected = (uid for uid, vs in guild._voice_states.items() if vs.channel is self)
        return [m for m in map(guild.get_member, connected) if m is not None]

    async def edit(
        self,
        *,
        name: str = MISSING,
        position: int = MISSING,
        topic: Optional[str] = MISSING,
        nsfw: bool = MISSING,
        category_id: Optional[int] = MISSING,
        overwrites: List[PermissionOverwrite] = MISSING,
        reason: Optional[str] = None,
    ) -> GuildChannel:
        """|coro|

        Changes the channel over REST. Only the given fields are sent.

        The response is merged into this object, which is returned.

        Raises
        ------
        GuildUnavailable
            The guild is in an outage.
        Forbidden
            Missing the permission to manage the channel.
        HTTPException
            The request failed.
        """
        self.guild._check_available()

        given = {'name': name, 'position': position, 'topic': topic, 'nsfw': nsfw, 'category_id': category_id}
        payload = {_EDIT_FIELDS[key]: value for key, value in given.items() if value is not MISSING}
        if overwrites is not MISSING:
            payload['permission_overwrites'] = [o._asdict() for o in overwrites]

        data = await self._state.http.edit_channel(self.id, reason=reason, **payload)
        return self._state.builder.create_channel(self.guild, data)

    async def send(self, content: str) -> Dict[str, Any]:
        """|coro|

        Posts a plain text message and returns the raw message payload.

        Raises
        -------
        ClientException
            The channel kind does not take messages.
        GuildUnavailable
            The guild is in an outage.
        HTTPException
            The request failed.
        """
        if self.type not in (ChannelType.text, ChannelType.news):
            raise ClientException(f'Cannot send messages to a {self.type} channel')

        self.guild._check_available()
        return await self._state.http.send_message(self.id, content=content)
