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
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, TYPE_CHECKING

from . import utils
from .enums import GuildSetupState

if TYPE_CHECKING:
    from .builder import SnapshotBuilder
    from .guild import Guild
    from .state import ConnectionState

    GuildCallback = Callable[[Guild], Any]

__all__ = (
    'GuildSetupNode',
    'GuildSetupController',
)

_log = logging.getLogger(__name__)

# Events that drive the construction itself are never held back
EXEMPT_EVENTS = frozenset(
    (
        'READY',
        'RESUMED',
        'GUILD_CREATE',
        'GUILD_DELETE',
        'GUILD_MEMBERS_CHUNK',
        'GUILD_SYNC',
    )
)


class GuildSetupNode:
    """The construction record of a guild that is locked.

    Attributes
    -----------
    guild_id: :class:`int`
        The guild this record belongs to.
    state: :class:`GuildSetupState`
        Where in the construction the guild is.
    payload: Optional[:class:`dict`]
        The raw GUILD_CREATE payload, kept while members are being collected.
    expected: :class:`int`
        The member count the collection has to reach.
    future: :class:`asyncio.Future`
        Resolved with the guild when the construction is done.
    deferred: Deque[Tuple[:class:`str`, :class:`dict`]]
        Events received for the guild while it was locked, in receipt order.
    """

    __slots__ = (
        'guild_id',
        'state',
        'payload',
        'expected',
        'future',
        'callbacks',
        'deferred',
        'timeout_handle',
        'was_ready',
    )

    def __init__(self, guild_id: int, *, loop: asyncio.AbstractEventLoop, was_ready: bool = False) -> None:
        self.guild_id: int = guild_id
        self.state: GuildSetupState = GuildSetupState.initializing
        self.payload: Optional[Dict[str, Any]] = None
        self.expected: int = 0
        self.future: asyncio.Future[Guild] = loop.create_future()
        self.callbacks: List[GuildCallback] = []
        self.deferred: Deque[Tuple[str, Dict[str, Any]]] = deque()
        self.timeout_handle: Optional[asyncio.TimerHandle] = None
        self.was_ready: bool = was_ready

    def __repr__(self) -> str:
        return (
            f'<GuildSetupNode guild_id={self.guild_id} state={self.state} '
            f'expected={self.expected} deferred={len(self.deferred)}>'
        )

    def cancel_timeout(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None

    def resolve(self, guild: Guild) -> None:
        if not self.future.done():
            self.future.set_result(guild)

        callbacks, self.callbacks = self.callbacks, []
        for callback in callbacks:
            try:
                callback(guild)
            except Exception:
                _log.exception('Ignoring exception in guild setup callback for guild %s.', guild.id)


class GuildSetupController:
    """Sequences the construction of guilds received over the gateway.

    A guild goes through a first pass as soon as its GUILD_CREATE payload
    arrives. If the payload did not carry every member the guild stays
    locked while the remaining members are requested and collected, and
    the second pass runs once the member cache reaches the declared count.

    The lock is the :class:`GuildSetupNode` stored on the guild itself.
    """

    def __init__(self, state: ConnectionState) -> None:
        self._state: ConnectionState = state

    @property
    def builder(self) -> SnapshotBuilder:
        return self._state.builder

    def get_node(self, guild_id: Optional[int], /) -> Optional[GuildSetupNode]:
        guild = self._state._get_guild(guild_id)
        if guild is None:
            return None
        return guild._setup

    def is_locked(self, guild_id: Optional[int], /) -> bool:
        return self.get_node(guild_id) is not None

    def _lock(self, guild: Guild, state: GuildSetupState) -> GuildSetupNode:
        node = guild._setup
        if node is None:
            was_ready = guild._setup_state == GuildSetupState.ready
            node = guild._setup = GuildSetupNode(guild.id, loop=self._state.loop, was_ready=was_ready)
        elif node.future.done():
            # a previous pass already handed the guild out, start a new one
            node.future = self._state.loop.create_future()

        node.state = state
        guild._setup_state = state
        return node

    # Deferral

    def try_defer(self, event: str, data: Any) -> bool:
        """Holds back an event that targets a locked guild.

        Returns ``True`` if the event was queued and must not be applied now.
        """
        if event in EXEMPT_EVENTS or not isinstance(data, dict):
            return False

        guild_id = utils._get_as_snowflake(data, 'guild_id')
        if guild_id is None and event == 'GUILD_UPDATE':
            guild_id = utils._get_as_snowflake(data, 'id')

        node = self.get_node(guild_id)
        if node is None:
            return False

        node.deferred.append((event, data))
        _log.debug('Deferred %s for guild %s while it is %s.', event, guild_id, node.state)
        return True

    def _replay(self, node: GuildSetupNode) -> None:
        deferred, node.deferred = node.deferred, deque()
        if deferred:
            _log.debug('Replaying %d deferred events for guild %s.', len(deferred), node.guild_id)

        parsers = self._state.parsers
        while deferred:
            event, data = deferred.popleft()
            if self.try_defer(event, data):
                continue

            try:
                func = parsers[event]
            except KeyError:
                _log.debug('Unknown deferred event %s.', event)
                continue

            # one malformed event must not cost the guild the rest of its queue
            try:
                func(data)
            except (KeyError, TypeError, ValueError):
                _log.warning('Failed to replay deferred %s for guild %s. Skipping.', event, node.guild_id, exc_info=True)

    # Construction

    def begin_first_pass(self, data: Dict[str, Any], on_ready: Optional[GuildCallback] = None) -> asyncio.Future[Guild]:
        """Starts constructing the guild described by a GUILD_CREATE payload.

        Returns a future that resolves with the :class:`Guild` once it is
        ready. ``on_ready``, if given, is called with the guild at the same
        time. For an unavailable guild both happen immediately.
        """
        guild = self.builder.create_guild(data)

        if data.get('unavailable', False):
            node = self._lock(guild, GuildSetupState.unavailable)
            node.cancel_timeout()
            node.payload = None
            node.was_ready = False
            if on_ready is not None:
                node.callbacks.append(on_ready)
            future = node.future
            node.resolve(guild)
            _log.debug('Guild %s is unavailable.', guild.id)
            return future

        node = self._lock(guild, GuildSetupState.initializing)
        node.cancel_timeout()
        if on_ready is not None:
            node.callbacks.append(on_ready)

        future = node.future
        self.builder.first_pass(guild, data)

        inline = len(data.get('members', []))
        expected = guild._member_count
        if expected is None or inline >= expected or not self._state._chunk_guilds:
            node.payload = data
            self._finalize(guild, node)
            return future

        node.payload = data
        node.expected = expected
        node.state = guild._setup_state = GuildSetupState.awaiting_chunks

        _log.debug('Guild %s has %d of %d members, requesting the rest.', guild.id, inline, expected)
        self._state.request_guild_members(guild.id)

        timeout = self._state._chunk_timeout(guild)
        if timeout is not None:
            node.timeout_handle = self._state.loop.call_later(timeout, self._on_chunk_timeout, guild.id)

        return future

    def on_chunk(self, data: Dict[str, Any]) -> Optional[Guild]:
        """Merges a GUILD_MEMBERS_CHUNK into a guild that is collecting members.

        Returns the guild if the chunk belonged to a guild under construction.
        """
        guild = self._state._get_guild(int(data['guild_id']))
        if guild is None:
            return None

        node = guild._setup
        if node is None or node.state not in (GuildSetupState.awaiting_chunks, GuildSetupState.collecting):
            return None

        node.state = guild._setup_state = GuildSetupState.collecting
        members = self.builder.create_members(guild, data.get('members', []))
        _log.debug(
            'Processed a chunk for %s members in guild ID %s (%d/%d).',
            len(members),
            guild.id,
            len(guild._members),
            node.expected,
        )

        self._check_complete(guild, node)
        return guild

    def on_sync(self, data: Dict[str, Any]) -> Optional[Guild]:
        guild = self._state._get_guild(int(data['id']))
        if guild is None:
            _log.debug('GUILD_SYNC referencing an unknown guild ID: %s. Discarding.', data['id'])
            return None

        self.builder.handle_sync(guild, data)

        node = guild._setup
        if node is not None and node.state in (GuildSetupState.awaiting_chunks, GuildSetupState.collecting):
            self._check_complete(guild, node)
        return guild

    def _check_complete(self, guild: Guild, node: GuildSetupNode) -> None:
        if len(guild._members) >= node.expected:
            self._finalize(guild, node)

    def _finalize(self, guild: Guild, node: GuildSetupNode) -> None:
        node.cancel_timeout()
        payload, node.payload = node.payload, None
        if payload is not None:
            self.builder.second_pass(guild, payload)

        guild._setup = None
        guild._setup_state = node.state = GuildSetupState.ready
        _log.debug('Guild %s is ready with %d members.', guild.id, len(guild._members))

        node.resolve(guild)
        if not node.was_ready:
            self._state.dispatch('guild_ready', guild)

        self._replay(node)

    def _on_chunk_timeout(self, guild_id: int) -> None:
        guild = self._state._get_guild(guild_id)
        if guild is None or guild._setup is None:
            return

        node = guild._setup
        node.timeout_handle = None
        if node.state not in (GuildSetupState.awaiting_chunks, GuildSetupState.collecting):
            return

        _log.warning(
            'Timed out waiting for chunks for guild ID %s (%d/%d members). Continuing with a partial member list.',
            guild_id,
            len(guild._members),
            node.expected,
        )
        self._finalize(guild, node)

    # Outages and removal

    def mark_unavailable(self, guild: Guild) -> None:
        """Locks a guild the gateway reported an outage for."""
        guild.unavailable = True
        node = self._lock(guild, GuildSetupState.unavailable)
        node.cancel_timeout()
        node.payload = None
        node.was_ready = False
        node.resolve(guild)

    def remove(self, guild: Guild) -> None:
        """Drops the construction state of a guild that was deleted."""
        node, guild._setup = guild._setup, None
        if node is None:
            return

        node.cancel_timeout()
        node.payload = None
        if node.deferred:
            _log.debug('Dropping %d deferred events for deleted guild %s.', len(node.deferred), guild.id)
            node.deferred.clear()

        node.resolve(guild)

    def clear(self) -> None:
        for guild in self._state.cache.guilds.values():
            node, guild._setup = guild._setup, None
            if node is not None:
                node.cancel_timeout()
                if not node.future.done():
                    node.future.cancel()
