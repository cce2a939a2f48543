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

from typing import Any, Dict, List, Optional, TYPE_CHECKING

from . import utils
from .cache import SnowflakeCache, SortedSnowflakeCache
from .enums import ChannelType, ContentFilter, GuildSetupState, NotificationLevel, VerificationLevel, try_enum
from .errors import GuildUnavailable
from .mixins import Hashable

if TYPE_CHECKING:
    import datetime

    from .channel import GuildChannel
    from .guild_setup import GuildSetupNode
    from .member import Member, VoiceState
    from .role import Role
    from .state import ConnectionState

__all__ = ('Guild',)


class Guild(Hashable):
    """The cached snapshot of one guild and everything nested in it.

    Roles, channels, members and voice states are owned by the guild and
    go away with it. The object is kept across outages and updated in
    place, so references held by user code stay valid.

    While :attr:`setup_state` is anything but :attr:`GuildSetupState.ready`
    the guild is locked. Gateway events for a locked guild are queued and
    applied once it finishes building.

    Attributes
    ----------
    id: :class:`int`
        Snowflake of the guild.
    name: :class:`str`
        Display name.
    owner_id: Optional[:class:`int`]
        User ID of the owner.
    unavailable: :class:`bool`
        The guild is in an outage. Only :attr:`id` can be trusted then.
    verification_level: :class:`VerificationLevel`
        Requirements a member must meet before talking.
    explicit_content_filter: :class:`ContentFilter`
        Which messages get scanned for explicit media.
    default_notifications: :class:`NotificationLevel`
        Notification default for new members.
    features: List[:class:`str`]
        Feature flags enabled for the guild.
    """

    __slots__ = (
        'id',
        'name',
        'owner_id',
        'unavailable',
        'verification_level',
        'explicit_content_filter',
        'default_notifications',
        'features',
        '_member_count',
        '_roles',
        '_channels',
        '_members',
        '_voice_states',
        '_setup',
        '_setup_state',
        '_state',
    )

    def __init__(self, *, data: Dict[str, Any], state: ConnectionState) -> None:
        self._state = state
        lock = state.cache.lock
        self._roles: SortedSnowflakeCache[Role] = SortedSnowflakeCache(lock=lock)
        self._channels: SortedSnowflakeCache[GuildChannel] = SortedSnowflakeCache(lock=lock)
        self._members: SnowflakeCache[Member] = SnowflakeCache(lock=lock)
        self._voice_states: Dict[int, VoiceState] = {}
        self._setup: Optional[GuildSetupNode] = None
        self._setup_state = GuildSetupState.initializing
        self._member_count: Optional[int] = None

        self.id: int = int(data['id'])
        self.name = ''
        self.owner_id: Optional[int] = None
        self.verification_level = VerificationLevel.none
        self.explicit_content_filter = ContentFilter.disabled
        self.default_notifications = NotificationLevel.all_messages
        self.features: List[str] = []
        self._from_data(data)

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return (
            f'<Guild id={self.id} name={self.name!r} setup_state={self._setup_state} '
            f'members={len(self._members)}/{self._member_count}>'
        )

    def _from_data(self, data: Dict[str, Any]) -> None:
        # nested entities are handled by the builder
        if 'member_count' in data:
            self._member_count = data['member_count']

        self.unavailable: bool = data.get('unavailable', False)
        if self.unavailable:
            return

        self.name = data.get('name', self.name)
        self.owner_id = utils._get_as_snowflake(data, 'owner_id')
        self.features = list(data.get('features', ()))
        self.verification_level = try_enum(VerificationLevel, data.get('verification_level', 0))
        self.explicit_content_filter = try_enum(ContentFilter, data.get('explicit_content_filter', 0))
        self.default_notifications = try_enum(NotificationLevel, data.get('default_message_notifications', 0))

    def _check_available(self) -> None:
        if self.unavailable:
            raise GuildUnavailable(self.id)

    @property
    def setup_state(self) -> GuildSetupState:
        """:class:`GuildSetupState`: How far the guild is through its construction."""
        return self._setup_state

    def is_locked(self) -> bool:
        """Whether events for this guild are currently being held back."""
        return self._setup is not None

    def is_ready(self) -> bool:
        return self._setup is None and self._setup_state is GuildSetupState.ready

    @property
    def member_count(self) -> Optional[int]:
        """Optional[:class:`int`]: The total the gateway reported, kept current by join and leave events."""
        return self._member_count

    @property
    def chunked(self) -> bool:
        """:class:`bool`: Every member the gateway reported is cached."""
        return self._member_count is not None and self._member_count == len(self._members)

    @property
    def created_at(self) -> datetime.datetime:
        return utils.snowflake_time(self.id)

    # Lookups. Passing ``None`` is allowed and finds nothing.

    @property
    def members(self) -> List[Member]:
        return self._members.values()

    def get_member(self, user_id: Optional[int], /) -> Optional[Member]:
        return self._members.get(user_id)

    @property
    def owner(self) -> Optional[Member]:
        """Optional[:class:`Member`]: The owner, when their member is cached."""
        return self._members.get(self.owner_id)

    @property
    def roles(self) -> List[Role]:
        """List[:class:`Role`]: Roles from the bottom of the hierarchy to the top."""
        return self._roles.sorted()

    def get_role(self, role_id: Optional[int], /) -> Optional[Role]:
        return self._roles.get(role_id)

    @property
    def default_role(self) -> Optional[Role]:
        """Optional[:class:`Role`]: ``@everyone``, which shares the guild's ID."""
        return self._roles.get(self.id)

    @property
    def channels(self) -> List[GuildChannel]:
        """List[:class:`GuildChannel`]: Every channel by position, ties broken by ID."""
        return self._channels.sorted()

    def get_channel(self, channel_id: Optional[int], /) -> Optional[GuildChannel]:
        return self._channels.get(channel_id)

    def _channels_of(self, *types: ChannelType) -> List[GuildChannel]:
        return [channel for channel in self._channels.sorted() if channel.type in types]

    @property
    def text_channels(self) -> List[GuildChannel]:
        return self._channels_of(ChannelType.text, ChannelType.news)

    @property
    def voice_channels(self) -> List[GuildChannel]:
        return self._channels_of(ChannelType.voice, ChannelType.stage_voice)

    @property
    def categories(self) -> List[GuildChannel]:
        return self._channels_of(ChannelType.category)

    async def fetch_member(self, member_id: int, /) -> Member:
        """|coro|

        Loads one member over REST and merges it into the cache.

        An already cached member is updated in place and returned.

        Raises
        -------
        GuildUnavailable
            The guild is in an outage.
        NotFound
            No such member.
        HTTPException
            The request failed.
        """
        self._check_available()
        payload = await self._state.http.get_member(self.id, member_id)
        return self._state.builder.create_member(self, payload)
