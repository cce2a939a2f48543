"""

Tests for the guild construction sequence in guildwire.guild_setup

"""

import asyncio
import logging

import pytest

from guildwire.enums import GuildSetupState
from guildwire.errors import GuildUnavailable

from helpers import (
    channel_payload,
    events,
    guild_payload,
    make_state,
    member_payload,
    role_payload,
    user_payload,
)


def feed(state, event, data):
    # the gateway applies the same check before handing the event to its parser
    if not state.setup.try_defer(event, data):
        state.parsers[event](data)


def chunk(guild_id, *user_ids):
    return {'guild_id': str(guild_id), 'members': [member_payload(u) for u in user_ids]}


@pytest.mark.asyncio
async def test_small_guild_is_ready_without_requesting_members():
    state, dispatched, gateway = make_state()
    payload = guild_payload(10, member_count=2, members=[member_payload(1), member_payload(2)])

    state.parse_ready({'user': user_payload(1), 'guilds': [payload]})
    task = state._ready_task
    await task

    guild = state._get_guild(10)
    assert guild is not None
    assert guild.is_ready()
    assert not guild.is_locked()
    assert guild.chunked
    assert gateway.chunk_requests == []
    assert events(dispatched, 'guild_ready') == [(guild,)]
    assert events(dispatched, 'ready') == [()]
    assert events(dispatched, 'guild_available') == [(guild,)]
    assert state._ready_task is None


@pytest.mark.asyncio
async def test_large_guild_waits_for_chunks():
    state, dispatched, gateway = make_state()
    payload = guild_payload(10, member_count=3, members=[member_payload(1)])

    state.parse_guild_create(payload)
    guild = state._get_guild(10)

    assert guild.is_locked()
    assert guild.setup_state == GuildSetupState.awaiting_chunks
    assert events(dispatched, 'guild_ready') == []

    await asyncio.sleep(0)
    assert gateway.chunk_requests == [10]
    assert gateway.sync_requests == []

    state.parse_guild_members_chunk(chunk(10, 2))
    assert guild.setup_state == GuildSetupState.collecting
    assert guild.is_locked()

    state.parse_guild_members_chunk(chunk(10, 3))
    assert guild.is_ready()
    assert sorted(m.id for m in guild.members) == [1, 2, 3]
    assert events(dispatched, 'guild_ready') == [(guild,)]
    assert events(dispatched, 'guild_join') == [(guild,)]

    # a late duplicate chunk is merged without a second ready
    state.parse_guild_members_chunk(chunk(10, 3))
    assert len(guild.members) == 3
    assert len(events(dispatched, 'guild_ready')) == 1


@pytest.mark.asyncio
async def test_ready_waits_for_startup_guilds_to_finish():
    state, dispatched, gateway = make_state()
    payload = guild_payload(10, member_count=2, members=[member_payload(1)])

    state.parse_ready({'user': user_payload(1), 'guilds': [payload]})
    task = state._ready_task

    await asyncio.sleep(0.05)
    assert events(dispatched, 'connect') == [()]
    assert events(dispatched, 'ready') == []

    state.parse_guild_members_chunk(chunk(10, 2))
    await task

    guild = state._get_guild(10)
    assert events(dispatched, 'ready') == [()]
    assert events(dispatched, 'guild_available') == [(guild,)]
    assert events(dispatched, 'guild_join') == []


@pytest.mark.asyncio
async def test_events_for_locked_guild_are_replayed_in_order():
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=2, members=[member_payload(1)]))
    guild = state._get_guild(10)

    feed(state, 'GUILD_ROLE_CREATE', {'guild_id': '10', 'role': role_payload(50, name='mods', position=1)})
    feed(state, 'GUILD_MEMBER_ADD', {'guild_id': '10', **member_payload(4, roles=[50])})

    assert guild.get_role(50) is None
    assert guild.get_member(4) is None
    assert len(guild._setup.deferred) == 2

    state.parse_guild_members_chunk(chunk(10, 2))

    assert guild.is_ready()
    names = [event for event, _ in dispatched]
    ready_at = names.index('guild_ready')
    assert names.index('guild_role_create') > ready_at
    assert names.index('member_join') > names.index('guild_role_create')

    member = guild.get_member(4)
    assert [r.id for r in member.roles] == [10, 50]
    assert guild.member_count == 3


@pytest.mark.asyncio
async def test_events_for_other_guilds_are_not_deferred():
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=2, members=[member_payload(1)]))
    state.parse_guild_create(guild_payload(20, member_count=1, members=[member_payload(1)]))

    feed(state, 'GUILD_ROLE_CREATE', {'guild_id': '20', 'role': role_payload(60)})

    assert state._get_guild(20).get_role(60) is not None
    assert len(events(dispatched, 'guild_role_create')) == 1


@pytest.mark.asyncio
async def test_chunk_timeout_finishes_with_partial_members():
    state, dispatched, _ = make_state(chunk_timeout=0.01)
    state.parse_guild_create(guild_payload(10, member_count=3, members=[member_payload(1)]))
    guild = state._get_guild(10)

    await asyncio.sleep(0.05)

    assert guild.is_ready()
    assert not guild.chunked
    assert [m.id for m in guild.members] == [1]
    assert events(dispatched, 'guild_ready') == [(guild,)]


@pytest.mark.asyncio
async def test_unavailable_guild_recovers():
    state, dispatched, _ = make_state()
    state.parse_ready({'user': user_payload(1), 'guilds': [{'id': '10', 'unavailable': True}]})
    await state._ready_task

    guild = state._get_guild(10)
    assert guild.unavailable
    assert guild.is_locked()
    assert guild.setup_state == GuildSetupState.unavailable
    assert events(dispatched, 'ready') == [()]
    assert events(dispatched, 'guild_available') == []

    with pytest.raises(GuildUnavailable):
        await guild.fetch_member(1)

    feed(state, 'GUILD_ROLE_CREATE', {'guild_id': '10', 'role': role_payload(50)})
    assert guild.get_role(50) is None

    payload = guild_payload(10, member_count=1, members=[member_payload(1)])
    payload['unavailable'] = False
    state.parse_guild_create(payload)

    assert state._get_guild(10) is guild
    assert guild.is_ready()
    assert not guild.unavailable
    assert guild.get_role(50) is not None
    assert events(dispatched, 'guild_available') == [(guild,)]
    assert events(dispatched, 'guild_ready') == [(guild,)]


@pytest.mark.asyncio
async def test_outage_locks_guild_until_it_comes_back():
    state, dispatched, _ = make_state()
    payload = guild_payload(10, member_count=1, members=[member_payload(1)])
    state.parse_guild_create(payload)
    guild = state._get_guild(10)

    state.parse_guild_delete({'id': '10', 'unavailable': True})

    assert state._get_guild(10) is guild
    assert guild.unavailable
    assert guild.is_locked()
    assert events(dispatched, 'guild_unavailable') == [(guild,)]

    payload = dict(payload, unavailable=False)
    state.parse_guild_create(payload)

    assert guild.is_ready()
    assert events(dispatched, 'guild_available') == [(guild,)]
    assert len(events(dispatched, 'guild_ready')) == 2


@pytest.mark.asyncio
async def test_repeated_create_updates_in_place():
    state, dispatched, _ = make_state()
    roles = [role_payload(10, name='@everyone'), role_payload(30, name='old', position=1), role_payload(31)]
    channels = [channel_payload(100, position=0)]
    state.parse_guild_create(guild_payload(10, member_count=1, members=[member_payload(1)], roles=roles, channels=channels))

    guild = state._get_guild(10)
    role = guild.get_role(30)
    channel = guild.get_channel(100)
    member = guild.get_member(1)

    roles = [role_payload(10, name='@everyone'), role_payload(30, name='new', position=2)]
    channels = [channel_payload(100, position=3)]
    state.parse_guild_create(guild_payload(10, member_count=1, members=[member_payload(1, nick='n')], roles=roles, channels=channels))

    assert state._get_guild(10) is guild
    assert guild.get_role(30) is role
    assert role.name == 'new'
    assert role.position == 2
    assert guild.get_role(31) is None
    assert state.get_role(31) is None
    assert guild.get_channel(100) is channel
    assert channel.position == 3
    assert guild.get_member(1) is member
    assert member.nick == 'n'
    assert len(events(dispatched, 'guild_ready')) == 1


@pytest.mark.asyncio
async def test_second_pass_builds_overwrites_and_voice_states():
    state, _, _ = make_state()
    overwrites = [
        {'id': '10', 'type': 0, 'allow': '1024', 'deny': '0'},
        {'id': '2', 'type': 1, 'allow': '0', 'deny': '2048'},
        {'id': '999', 'type': 1, 'allow': '0', 'deny': '0'},
    ]
    payload = guild_payload(
        10,
        member_count=2,
        members=[member_payload(1)],
        channels=[channel_payload(100, overwrites=overwrites), channel_payload(200, type=2, position=1)],
        voice_states=[{'user_id': '2', 'channel_id': '200', 'session_id': 'abc'}],
        owner_id=2,
    )
    state.parse_guild_create(payload)
    guild = state._get_guild(10)

    # nothing that needs the full member list is built yet
    assert guild.get_channel(100).overwrites == []

    state.parse_guild_members_chunk(chunk(10, 2))

    text = guild.get_channel(100)
    assert [(o.id, o.is_role()) for o in text.overwrites] == [(10, True), (2, False)]
    assert guild.owner is guild.get_member(2)
    assert guild.get_member(2).voice.channel is guild.get_channel(200)
    assert guild.get_channel(200).voice_members == [guild.get_member(2)]


@pytest.mark.asyncio
async def test_guild_deleted_during_setup():
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=3, members=[member_payload(1)]))
    guild = state._get_guild(10)
    node = guild._setup

    feed(state, 'GUILD_ROLE_CREATE', {'guild_id': '10', 'role': role_payload(50)})
    state.parse_guild_delete({'id': '10'})

    assert state._get_guild(10) is None
    assert node.future.done()
    assert node.timeout_handle is None
    assert not guild.is_locked()
    assert events(dispatched, 'guild_remove') == [(guild,)]
    assert events(dispatched, 'guild_role_create') == []
    assert events(dispatched, 'guild_ready') == []

    # late chunks for the removed guild are discarded
    state.parse_guild_members_chunk(chunk(10, 2))
    assert state._get_guild(10) is None


@pytest.mark.asyncio
async def test_user_accounts_complete_through_sync():
    state, dispatched, gateway = make_state(bot=False)
    state.parse_guild_create(guild_payload(10, member_count=3, members=[member_payload(1)]))
    guild = state._get_guild(10)

    await asyncio.sleep(0)
    assert gateway.chunk_requests == [10]
    assert gateway.sync_requests == [10]

    state.parse_guild_sync({'id': '10', 'members': [member_payload(2), member_payload(3)], 'presences': []})

    assert guild.is_ready()
    assert events(dispatched, 'guild_ready') == [(guild,)]


@pytest.mark.asyncio
async def test_chunking_can_be_disabled():
    state, dispatched, gateway = make_state(chunk_guilds_at_startup=False)
    state.parse_guild_create(guild_payload(10, member_count=500, members=[member_payload(1)]))
    guild = state._get_guild(10)

    await asyncio.sleep(0)
    assert guild.is_ready()
    assert gateway.chunk_requests == []
    assert events(dispatched, 'guild_ready') == [(guild,)]


def test_invalid_options_are_rejected():
    with pytest.raises(ValueError):
        make_state(chunk_timeout=0)
    with pytest.raises(ValueError):
        make_state(guild_ready_timeout=-1)


@pytest.mark.asyncio
async def test_malformed_deferred_event_does_not_stop_replay(caplog: pytest.LogCaptureFixture):
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=2, members=[member_payload(1)]))
    guild = state._get_guild(10)

    # no user object, the parser cannot apply it
    feed(state, 'GUILD_MEMBER_UPDATE', {'guild_id': '10', 'nick': 'broken'})
    feed(state, 'GUILD_ROLE_CREATE', {'guild_id': '10', 'role': role_payload(50, name='mods', position=1)})
    assert len(guild._setup.deferred) == 2

    with caplog.at_level(logging.WARNING, logger='guildwire.guild_setup'):
        state.parse_guild_members_chunk(chunk(10, 2))

    assert guild.is_ready()
    role = guild.get_role(50)
    assert role is not None
    assert events(dispatched, 'guild_role_create') == [(role,)]
    assert events(dispatched, 'member_update') == []
    assert 'GUILD_MEMBER_UPDATE' in caplog.text


@pytest.mark.asyncio
async def test_chunk_for_guild_in_outage_is_discarded():
    state, _, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=1, members=[member_payload(1)]))
    guild = state._get_guild(10)
    state.parse_guild_delete({'id': '10', 'unavailable': True})

    state.parse_guild_members_chunk(chunk(10, 2))

    assert guild.is_locked()
    assert guild.setup_state == GuildSetupState.unavailable
    assert guild.get_member(2) is None
    assert state.get_user(2) is None


@pytest.mark.asyncio
async def test_member_requests_from_one_ready_are_batched():
    state, _, gateway = make_state(bot=False)
    guild_ids = list(range(100, 160))
    payloads = [guild_payload(guild_id, member_count=2, members=[member_payload(1)]) for guild_id in guild_ids]

    state.parse_ready({'user': user_payload(1), 'guilds': payloads})
    assert gateway.chunk_frames == []

    await asyncio.sleep(0)
    assert gateway.chunk_frames == [guild_ids[:50], guild_ids[50:]]
    assert gateway.sync_requests == guild_ids
    assert state._member_request_task is None

    # a later guild gets a frame of its own
    state.parse_guild_create(guild_payload(200, member_count=2, members=[member_payload(1)]))
    await asyncio.sleep(0)
    assert gateway.chunk_frames[-1] == 200

    state._ready_task.cancel()
    await asyncio.sleep(0)
