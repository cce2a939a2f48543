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
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from . import utils
from .channel import GuildChannel, PermissionOverwrite
from .enums import OverwriteType
from .errors import InvalidData
from .guild import Guild
from .member import Member, VoiceState
from .role import Role
from .user import User

if TYPE_CHECKING:
    from .cache import EntityCache
    from .state import ConnectionState

__all__ = ('SnapshotBuilder',)

_log = logging.getLogger(__name__)


class SnapshotBuilder:
    """Translates gateway and REST payloads into cache mutations.

    One builder is owned by each :class:`ConnectionState`. Every method
    that receives the payload of an entity that is already cached updates
    that entity in place and returns it, so references held elsewhere stay
    valid.

    Malformed sub-entities are logged and skipped. Building the rest of the
    payload continues.
    """

    def __init__(self, state: ConnectionState) -> None:
        self._state: ConnectionState = state

    def __repr__(self) -> str:
        return f'<SnapshotBuilder cache={self.cache!r}>'

    @property
    def cache(self) -> EntityCache:
        return self._state.cache

    # Users

    def store_user(self, data: Dict[str, Any]) -> User:
        user_id = int(data['id'])
        user = self.cache.users.get(user_id)
        if user is not None:
            # partial user objects only carry the ID
            if len(data) > 1:
                user._update(data)
            return user

        user = User(state=self._state, data=data)
        self.cache.users.add(user)
        return user

    # Guilds

    def create_guild(self, data: Dict[str, Any]) -> Guild:
        """Returns the guild for the payload, creating it on first contact.

        Only the top level attributes are applied.
        """
        guild_id = int(data['id'])
        guild = self.cache.guilds.get(guild_id)
        if guild is None:
            guild = Guild(data=data, state=self._state)
            self.cache.guilds.add(guild)
            _log.debug('Created guild %s.', guild_id)
        else:
            guild._from_data(data)
        return guild

    def first_pass(self, guild: Guild, data: Dict[str, Any]) -> None:
        """Builds everything that does not depend on the full member list.

        Roles are built before members since members refer to them.
        Channels are built without their permission overwrites.
        """
        guild._from_data(data)

        seen_roles = set()
        for r in data.get('roles', []):
            try:
                role = self.create_role(guild, r)
            except (KeyError, TypeError, ValueError):
                _log.warning('Guild %s sent a malformed role %r. Skipping.', guild.id, r)
            else:
                seen_roles.add(role.id)

        for role in guild._roles.values():
            if role.id not in seen_roles:
                self.cache.remove_role(role)

        self.create_members(guild, data.get('members', []))

        if guild.owner_id is not None and guild.get_member(guild.owner_id) is None:
            _log.debug('Owner of guild %s is not cached yet.', guild.id)

        if 'channels' in data:
            seen_channels = set()
            for c in data['channels']:
                try:
                    channel = self.create_channel(guild, c, overwrites=False)
                except (KeyError, TypeError, ValueError):
                    _log.warning('Guild %s sent a malformed channel %r. Skipping.', guild.id, c)
                else:
                    seen_channels.add(channel.id)

            for channel in guild._channels.values():
                if channel.id not in seen_channels:
                    self.cache.remove_channel(channel)

    def second_pass(self, guild: Guild, data: Dict[str, Any]) -> None:
        """Builds everything that needs the member list to be complete.

        This resolves the owner, builds channel permission overwrites and
        builds voice states.
        """
        if guild.owner_id is not None and guild.owner is None:
            _log.warning('Never found the owner %s of guild %s.', guild.owner_id, guild.id)

        for c in data.get('channels', []):
            channel = guild.get_channel(utils._get_as_snowflake(c, 'id'))
            if channel is not None:
                self.build_overwrites(channel, c.get('permission_overwrites', []))

        guild._voice_states.clear()
        for vs in data.get('voice_states', []):
            self.create_voice_state(guild, vs)

    # Roles

    def create_role(self, guild: Guild, data: Dict[str, Any]) -> Role:
        role = guild.get_role(int(data['id']))
        if role is not None:
            role._update(data)
            return role

        role = Role(guild=guild, state=self._state, data=data)
        self.cache.add_role(role)
        return role

    # Members

    def create_members(self, guild: Guild, members: Iterable[Dict[str, Any]]) -> List[Member]:
        """Merges a batch of member payloads keyed by user ID."""
        result = []
        for data in members:
            try:
                result.append(self.create_member(guild, data))
            except (KeyError, TypeError, ValueError):
                _log.warning('Guild %s sent a malformed member %r. Skipping.', guild.id, data)
        return result

    def create_member(self, guild: Guild, data: Dict[str, Any]) -> Member:
        user = self.store_user(data['user'])
        member = guild.get_member(user.id)
        if member is None:
            member = Member(data=data, guild=guild, user=user, state=self._state)
            guild._members.add(member)
        else:
            member._update(data)

        if 'roles' in data:
            member._set_roles(self._resolve_roles(guild, member, data['roles']))
        return member

    def _resolve_roles(self, guild: Guild, member: Member, role_ids: Iterable[Any]) -> List[int]:
        resolved = []
        for raw in role_ids:
            role_id = int(raw)
            if guild.get_role(role_id) is None:
                exc = InvalidData(f'Member {member.id} references unknown role {role_id} in guild {guild.id}')
                _log.warning('%s. Skipping the role.', exc)
                continue
            resolved.append(role_id)
        return resolved

    def remove_member(self, guild: Guild, user_id: int) -> Optional[Member]:
        guild._voice_states.pop(user_id, None)
        return guild._members.remove(user_id)

    # Channels

    def create_channel(self, guild: Guild, data: Dict[str, Any], *, overwrites: bool = True) -> GuildChannel:
        channel = guild.get_channel(int(data['id']))
        if channel is not None:
            channel._update(data)
        else:
            channel = GuildChannel(state=self._state, guild=guild, data=data)
            self.cache.add_channel(channel)

        if overwrites and 'permission_overwrites' in data:
            self.build_overwrites(channel, data['permission_overwrites'])
        return channel

    def build_overwrites(self, channel: GuildChannel, overwrites: Iterable[Dict[str, Any]]) -> None:
        guild = channel.guild
        result = []
        for data in overwrites:
            try:
                overwrite = PermissionOverwrite(channel=channel, data=data)
            except (KeyError, TypeError, ValueError):
                _log.warning('Channel %s sent a malformed permission overwrite %r. Skipping.', channel.id, data)
                continue

            if overwrite.type == OverwriteType.role:
                known = guild.get_role(overwrite.id) is not None
            elif overwrite.type == OverwriteType.member:
                known = guild.get_member(overwrite.id) is not None
            else:
                known = False

            if not known:
                _log.warning(
                    'Channel %s has a permission overwrite for unknown %s %s. Skipping.',
                    channel.id,
                    overwrite.type.name,
                    overwrite.id,
                )
                continue

            result.append(overwrite)

        channel._set_overwrites(result)

    # Voice states

    def create_voice_state(self, guild: Guild, data: Dict[str, Any]) -> Optional[VoiceState]:
        user_id = int(data['user_id'])
        if guild.get_member(user_id) is None:
            _log.warning('Voice state for unknown member %s in guild %s. Skipping.', user_id, guild.id)
            return None

        channel_id = utils._get_as_snowflake(data, 'channel_id')
        if channel_id is None:
            guild._voice_states.pop(user_id, None)
            return None

        channel = guild.get_channel(channel_id)
        if channel is None:
            _log.warning('Voice state for member %s references unknown channel %s. Skipping.', user_id, channel_id)
            return None

        state = guild._voice_states.get(user_id)
        if state is None:
            state = guild._voice_states[user_id] = VoiceState(data=data, channel=channel)
        else:
            state.session_id = data.get('session_id', state.session_id)
            state._update(data, channel)
        return state

    # Sync

    def handle_sync(self, guild: Guild, data: Dict[str, Any]) -> None:
        """Merges the members of a GUILD_SYNC payload.

        Presences are only known for members, so a presence for a user
        that is not a member is logged and dropped.
        """
        self.create_members(guild, data.get('members', []))
        for presence in data.get('presences', []):
            user_id = utils._get_as_snowflake(presence.get('user', {}), 'id')
            if guild.get_member(user_id) is None:
                _log.warning('Presence for unknown member %s in guild %s. Skipping.', user_id, guild.id)

    # Removal

    def remove_guild(self, guild: Guild) -> None:
        """Removes a guild and drops users that no longer share one."""
        self.cache.remove_guild(guild)
        me = self._state.user
        self.cache.collect_users(keep=(me.id,) if me is not None else ())
