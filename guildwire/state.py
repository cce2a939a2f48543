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
import copy
import inspect
import logging
from typing import Any, Callable, Coroutine, Dict, List, Optional, TYPE_CHECKING

from . import utils
from .builder import SnapshotBuilder
from .cache import EntityCache
from .errors import ConnectionClosed
from .guild_setup import GuildSetupController
from .user import ClientUser
from .utils import MISSING

if TYPE_CHECKING:
    from .channel import GuildChannel
    from .gateway import GatewaySession
    from .guild import Guild
    from .http import HTTPClient
    from .role import Role
    from .user import User

    Hook = Callable[..., Coroutine[Any, Any, Any]]

_log = logging.getLogger(__name__)

__all__ = ('ConnectionState',)

# guild IDs per op 8 frame
MEMBER_REQUEST_BATCH = 50


class ConnectionState:
    """The cache of one gateway connection and the parsers that feed it.

    A gateway event ``SOME_EVENT`` is routed to ``parse_some_event``.
    Parsers run synchronously, so an event is fully applied before the
    next frame is read off the socket.

    Options
    -------
    bot: :class:`bool`
        Logged in as a bot. User accounts also send a guild sync with
        every member request.
    intents: :class:`int`
        Intent bits sent with IDENTIFY.
    chunk_guilds_at_startup: :class:`bool`
        Request the members a large guild leaves out of its GUILD_CREATE.
    chunk_timeout: Optional[:class:`float`]
        Seconds to wait for chunks before a guild is finished with a
        partial member list. ``None`` waits forever. By default it scales
        with the member count.
    guild_ready_timeout: :class:`float`
        Seconds without a new startup guild before ``ready`` is sent.
    heartbeat_timeout: :class:`float`
        Seconds without any gateway traffic before the socket is dropped.
    """

    def __init__(
        self,
        *,
        dispatch: Callable[..., Any],
        handlers: Dict[str, Callable[..., Any]],
        hooks: Dict[str, Hook],
        http: HTTPClient,
        **options: Any,
    ) -> None:
        # bound by the client once it has a loop
        self.loop: asyncio.AbstractEventLoop = MISSING
        self.http = http
        self.dispatch = dispatch
        self.handlers = handlers
        self.hooks = hooks
        self._ws: Optional[GatewaySession] = None
        self._ready_task: Optional[asyncio.Task[None]] = None
        self._ready_state: Optional[asyncio.Queue[asyncio.Future[Guild]]] = None
        self._member_requests: List[int] = []
        self._member_request_task: Optional[asyncio.Task[None]] = None

        self.is_bot: bool = options.get('bot', True)
        self.intents: int = options.get('intents', 0b10000011)
        self.heartbeat_timeout: float = options.get('heartbeat_timeout', 60.0)

        self.guild_ready_timeout: float = options.get('guild_ready_timeout', 2.0)
        if self.guild_ready_timeout < 0:
            raise ValueError('guild_ready_timeout cannot be negative')

        self._chunk_guilds: bool = options.get('chunk_guilds_at_startup', True)
        self.chunk_timeout: Optional[float] = options.get('chunk_timeout', MISSING)
        if self.chunk_timeout not in (MISSING, None) and self.chunk_timeout <= 0:  # type: ignore
            raise ValueError('chunk_timeout must be a positive number or None')

        self.user: Optional[ClientUser] = None
        self.cache = EntityCache()
        self.builder = SnapshotBuilder(self)
        self.setup = GuildSetupController(self)

        self.parsers: Dict[str, Callable[[Any], None]] = {
            name[len('parse_'):].upper(): method
            for name, method in inspect.getmembers(self, inspect.ismethod)
            if name.startswith('parse_')
        }

        self.clear()

    def clear(self) -> None:
        self.user = None
        self._member_requests.clear()
        self.setup.clear()
        self.cache.clear()

    def call_handlers(self, key: str, *args: Any, **kwargs: Any) -> None:
        handler = self.handlers.get(key)
        if handler is not None:
            handler(*args, **kwargs)

    async def call_hooks(self, key: str, *args: Any, **kwargs: Any) -> None:
        hook = self.hooks.get(key)
        if hook is not None:
            await hook(*args, **kwargs)

    def _update_references(self, ws: GatewaySession) -> None:
        self._ws = ws

    @property
    def ws(self) -> Optional[GatewaySession]:
        return self._ws

    # Lookups

    @property
    def guilds(self) -> List[Guild]:
        return self.cache.guilds.values()

    @property
    def users(self) -> List[User]:
        return self.cache.users.values()

    def _get_guild(self, guild_id: Optional[int], /) -> Optional[Guild]:
        return self.cache.guilds.get(guild_id)

    def get_user(self, id: Optional[int], /) -> Optional[User]:
        return self.cache.users.get(id)

    def get_channel(self, id: Optional[int], /) -> Optional[GuildChannel]:
        return self.cache.channels.get(id)

    def get_role(self, id: Optional[int], /) -> Optional[Role]:
        return self.cache.roles.get(id)

    def _guild_of(self, event: str, data: Dict[str, Any], key: str = 'guild_id') -> Optional[Guild]:
        guild_id = utils._get_as_snowflake(data, key)
        guild = self._get_guild(guild_id)
        if guild is None:
            _log.debug('Ignoring %s for unknown guild %s.', event, guild_id)
        return guild

    # Member requests

    def _chunk_timeout(self, guild: Guild) -> Optional[float]:
        if self.chunk_timeout is MISSING:
            # roughly one second per ten thousand members
            return max(5.0, (guild._member_count or 0) / 10000)
        return self.chunk_timeout

    def request_guild_members(self, guild_id: int) -> None:
        """Queues a request for the full member list of a guild.

        Requests made during the same loop iteration, like the large guilds
        of one READY, go out together in frames of up to
        ``MEMBER_REQUEST_BATCH`` guild IDs.
        """
        if self._ws is None:
            _log.warning('No gateway connection to request the members of guild %s.', guild_id)
            return

        if guild_id not in self._member_requests:
            self._member_requests.append(guild_id)

        if self._member_request_task is None:
            self._member_request_task = self.loop.create_task(self._send_member_requests())

    async def _send_member_requests(self) -> None:
        try:
            while self._member_requests:
                batch = self._member_requests[:MEMBER_REQUEST_BATCH]
                del self._member_requests[:MEMBER_REQUEST_BATCH]

                ws = self._ws
                if ws is None:
                    _log.warning('Dropping member requests for %d guilds, the gateway went away.', len(batch))
                    continue

                try:
                    await ws.request_chunks(batch[0] if len(batch) == 1 else batch, query='', limit=0)
                    if not self.is_bot:
                        for guild_id in batch:
                            await ws.request_sync(guild_id)
                except ConnectionClosed as exc:
                    _log.warning('Member request for guilds %s failed, the gateway closed with %s.', batch, exc.code)
        finally:
            self._member_request_task = None

    # Startup

    def _is_starting(self) -> bool:
        return self._ready_task is not None and self._ready_state is not None

    async def _delay_ready(self) -> None:
        queue = self._ready_state
        assert queue is not None
        try:
            # every startup guild shows up within guild_ready_timeout of the last one
            pending: List[asyncio.Future[Guild]] = []
            while True:
                try:
                    pending.append(await asyncio.wait_for(queue.get(), timeout=self.guild_ready_timeout))
                except asyncio.TimeoutError:
                    break

            if pending:
                await asyncio.wait(pending)
            self._ready_state = None
        except asyncio.CancelledError:
            pass
        else:
            self.call_handlers('ready')
            self.dispatch('ready')
            for future in pending:
                if future.cancelled() or future.exception() is not None:
                    continue
                guild = future.result()
                if guild.is_ready() and not guild.unavailable:
                    self.dispatch('guild_available', guild)
        finally:
            if self._ready_task is asyncio.current_task():
                self._ready_task = None

    def parse_ready(self, data: Dict[str, Any]) -> None:
        if self._ready_task is not None:
            self._ready_task.cancel()

        self.clear()
        queue = self._ready_state = asyncio.Queue()
        self.user = ClientUser(state=self, data=data['user'])
        self.cache.users.add(self.user)

        for payload in data.get('guilds', []):
            future = self.setup.begin_first_pass(payload)
            if not payload.get('unavailable', False):
                queue.put_nowait(future)

        self.dispatch('connect')
        self._ready_task = self.loop.create_task(self._delay_ready())

    def parse_resumed(self, data: Any) -> None:
        self.dispatch('resumed')

    def parse_user_update(self, data: Dict[str, Any]) -> None:
        me = self.user
        if me is None or int(data['id']) != me.id:
            return

        before = copy.copy(me)
        me._update(data)
        self.dispatch('user_update', before, me)

    # Guilds

    def parse_guild_create(self, data: Dict[str, Any]) -> None:
        # True: joined while in an outage, False: back from an outage, absent: a new guild
        unavailable = data.get('unavailable')
        if unavailable is True:
            self.setup.begin_first_pass(data)
            return

        if self._is_starting():
            self._ready_state.put_nowait(self.setup.begin_first_pass(data))  # type: ignore
            return

        def announce(guild: Guild) -> None:
            if guild.is_ready():
                self.dispatch('guild_join' if unavailable is None else 'guild_available', guild)

        self.setup.begin_first_pass(data, announce)

    def parse_guild_update(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_UPDATE', data, 'id')
        if guild is None:
            return

        before = copy.copy(guild)
        guild._from_data(data)
        self.dispatch('guild_update', before, guild)

    def parse_guild_delete(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_DELETE', data, 'id')
        if guild is None:
            return

        if data.get('unavailable', False):
            # an outage, the guild stays cached but locked
            self.setup.mark_unavailable(guild)
            self.dispatch('guild_unavailable', guild)
            return

        self.setup.remove(guild)
        self.builder.remove_guild(guild)
        self.dispatch('guild_remove', guild)

    def parse_guild_members_chunk(self, data: Dict[str, Any]) -> None:
        if self.setup.on_chunk(data) is not None:
            return

        guild = self._guild_of('GUILD_MEMBERS_CHUNK', data)
        if guild is None:
            return

        if guild.is_locked():
            _log.debug('Ignoring GUILD_MEMBERS_CHUNK for guild %s while it is %s.', guild.id, guild.setup_state)
            return

        members = self.builder.create_members(guild, data.get('members', []))
        _log.debug('Merged a late chunk of %d members into guild %s.', len(members), guild.id)

    def parse_guild_sync(self, data: Dict[str, Any]) -> None:
        self.setup.on_sync(data)

    # Roles

    def parse_guild_role_create(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_ROLE_CREATE', data)
        if guild is not None:
            self.dispatch('guild_role_create', self.builder.create_role(guild, data['role']))

    def parse_guild_role_update(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_ROLE_UPDATE', data)
        if guild is None:
            return

        payload = data['role']
        role = guild.get_role(int(payload['id']))
        if role is None:
            _log.debug('Ignoring GUILD_ROLE_UPDATE for unknown role %s.', payload['id'])
            return

        before = copy.copy(role)
        role._update(payload)
        self.dispatch('guild_role_update', before, role)

    def parse_guild_role_delete(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_ROLE_DELETE', data)
        role = guild.get_role(int(data['role_id'])) if guild is not None else None
        if role is not None:
            self.cache.remove_role(role)
            self.dispatch('guild_role_delete', role)

    # Channels

    def parse_channel_create(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('CHANNEL_CREATE', data)
        if guild is not None:
            self.dispatch('guild_channel_create', self.builder.create_channel(guild, data))

    def parse_channel_update(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('CHANNEL_UPDATE', data)
        if guild is None:
            return

        channel = guild.get_channel(int(data['id']))
        if channel is None:
            _log.debug('Ignoring CHANNEL_UPDATE for unknown channel %s.', data['id'])
            return

        before = copy.copy(channel)
        self.builder.create_channel(guild, data)
        self.dispatch('guild_channel_update', before, channel)

    def parse_channel_delete(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('CHANNEL_DELETE', data)
        channel = guild.get_channel(int(data['id'])) if guild is not None else None
        if channel is not None:
            self.cache.remove_channel(channel)
            self.dispatch('guild_channel_delete', channel)

    # Members

    def parse_guild_member_add(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_MEMBER_ADD', data)
        if guild is None:
            return

        member = self.builder.create_member(guild, data)
        if guild._member_count is not None:
            guild._member_count += 1
        self.dispatch('member_join', member)

    def parse_guild_member_update(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_MEMBER_UPDATE', data)
        if guild is None:
            return

        member = guild.get_member(int(data['user']['id']))
        if member is None:
            # missed the join, take the update as the full record
            self.builder.create_member(guild, data)
            return

        before = copy.copy(member)
        self.builder.create_member(guild, data)
        self.dispatch('member_update', before, member)

    def parse_guild_member_remove(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('GUILD_MEMBER_REMOVE', data)
        if guild is None:
            return

        if guild._member_count is not None:
            guild._member_count -= 1

        member = self.builder.remove_member(guild, int(data['user']['id']))
        if member is not None:
            self.dispatch('member_remove', member)

    # Voice

    def parse_voice_state_update(self, data: Dict[str, Any]) -> None:
        guild = self._guild_of('VOICE_STATE_UPDATE', data)
        if guild is None:
            return

        member = guild.get_member(int(data['user_id']))
        if member is None:
            _log.debug('Ignoring VOICE_STATE_UPDATE for unknown member %s.', data['user_id'])
            return

        before = copy.copy(member.voice)
        after = self.builder.create_voice_state(guild, data)
        self.dispatch('voice_state_update', member, before, after)
