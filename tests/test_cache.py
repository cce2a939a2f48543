"""

Tests for the entity cache and the events that mutate it

"""

import pytest

from guildwire.cache import SnowflakeCache, SortedSnowflakeCache

from helpers import channel_payload, events, guild_payload, make_state, member_payload, role_payload, user_payload


class Item:
    def __init__(self, id, position=0):
        self.id = id
        self.position = position


def test_snowflake_cache_basics():
    cache = SnowflakeCache()
    item = cache.add(Item(1))

    assert 1 in cache
    assert len(cache) == 1
    assert cache.get(1) is item
    assert cache.get(None) is None
    assert cache.remove(1) is item
    assert cache.remove(1) is None
    assert list(cache) == []


def test_sorted_cache_orders_by_position_then_id():
    cache = SortedSnowflakeCache()
    for id, position in ((5, 1), (3, 1), (9, 0), (1, 2)):
        cache.add(Item(id, position))

    assert [i.id for i in cache.sorted()] == [9, 3, 5, 1]


@pytest.mark.asyncio
async def test_role_updates_keep_identity():
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=0, roles=[role_payload(10), role_payload(30, name='a')]))
    guild = state._get_guild(10)
    role = guild.get_role(30)

    state.parse_guild_role_update({'guild_id': '10', 'role': role_payload(30, name='b', position=4)})
    state.parse_guild_role_update({'guild_id': '10', 'role': role_payload(30, name='c', position=5)})

    assert guild.get_role(30) is role
    assert state.get_role(30) is role
    assert role.name == 'c'
    assert role.position == 5

    updates = events(dispatched, 'guild_role_update')
    assert [(old.name, new.name) for old, new in updates] == [('a', 'b'), ('b', 'c')]
    assert all(new is role for _, new in updates)


@pytest.mark.asyncio
async def test_roles_and_channels_are_sorted():
    state, _, _ = make_state()
    roles = [role_payload(10), role_payload(40, position=1), role_payload(20, position=1), role_payload(30, position=2)]
    channels = [
        channel_payload(300, type=4, position=0),
        channel_payload(200, position=1, parent_id=300),
        channel_payload(100, position=1, parent_id=300),
        channel_payload(400, type=2, position=0),
    ]
    state.parse_guild_create(guild_payload(10, member_count=0, roles=roles, channels=channels))
    guild = state._get_guild(10)

    assert [r.id for r in guild.roles] == [10, 20, 40, 30]
    assert [c.id for c in guild.channels] == [300, 400, 100, 200]
    assert [c.id for c in guild.text_channels] == [100, 200]
    assert [c.id for c in guild.voice_channels] == [400]
    assert [c.id for c in guild.get_channel(300).channels] == [100, 200]
    assert guild.get_channel(100).category is guild.get_channel(300)


@pytest.mark.asyncio
async def test_channel_and_role_events_update_indexes():
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=0))
    guild = state._get_guild(10)

    state.parse_channel_create(dict(channel_payload(100), guild_id='10'))
    channel = state.get_channel(100)
    assert guild.get_channel(100) is channel

    state.parse_channel_update(dict(channel_payload(100, position=7), guild_id='10'))
    assert guild.get_channel(100) is channel
    assert channel.position == 7

    state.parse_channel_delete({'id': '100', 'guild_id': '10'})
    assert state.get_channel(100) is None
    assert guild.get_channel(100) is None

    state.parse_guild_role_create({'guild_id': '10', 'role': role_payload(50)})
    state.parse_guild_role_delete({'guild_id': '10', 'role_id': '50'})
    assert state.get_role(50) is None
    assert guild.get_role(50) is None

    assert [name for name, _ in dispatched if name.startswith('guild_channel') or name.startswith('guild_role')] == [
        'guild_channel_create',
        'guild_channel_update',
        'guild_channel_delete',
        'guild_role_create',
        'guild_role_delete',
    ]


@pytest.mark.asyncio
async def test_guild_removal_cascades():
    state, dispatched, _ = make_state()
    state.parse_ready({'user': user_payload(1), 'guilds': []})
    await state._ready_task

    state.parse_guild_create(
        guild_payload(
            10,
            member_count=2,
            members=[member_payload(1), member_payload(2)],
            roles=[role_payload(10), role_payload(30)],
            channels=[channel_payload(100)],
        )
    )
    state.parse_guild_create(guild_payload(20, member_count=1, members=[member_payload(3)], roles=[role_payload(20)]))
    guild = state._get_guild(10)

    state.parse_guild_delete({'id': '10'})

    assert state._get_guild(10) is None
    assert state.get_channel(100) is None
    assert state.get_role(30) is None
    assert state.get_role(20) is not None
    assert guild.members == []
    assert events(dispatched, 'guild_remove') == [(guild,)]

    # the connected user is kept even though it shares no guild anymore
    assert state.get_user(1) is state.user
    assert state.get_user(2) is None
    assert state.get_user(3) is not None


@pytest.mark.asyncio
async def test_member_events():
    state, dispatched, _ = make_state()
    state.parse_guild_create(guild_payload(10, member_count=1, members=[member_payload(1)], roles=[role_payload(10), role_payload(30)]))
    guild = state._get_guild(10)

    state.parse_guild_member_add({'guild_id': '10', **member_payload(2)})
    member = guild.get_member(2)
    assert guild.member_count == 2

    state.parse_guild_member_update({'guild_id': '10', **member_payload(2, roles=[30, 77], nick='two')})
    assert guild.get_member(2) is member
    assert member.nick == 'two'
    assert [r.id for r in member.roles] == [10, 30]
    assert member.top_role is guild.get_role(30)

    state.parse_guild_member_remove({'guild_id': '10', 'user': user_payload(2)})
    assert guild.get_member(2) is None
    assert guild.member_count == 1

    assert [name for name, _ in dispatched if name.startswith('member_')] == ['member_join', 'member_update', 'member_remove']
    old, new = events(dispatched, 'member_update')[0]
    assert old.nick is None
    assert new is member


@pytest.mark.asyncio
async def test_voice_state_update():
    state, dispatched, _ = make_state()
    state.parse_guild_create(
        guild_payload(10, member_count=1, members=[member_payload(1)], channels=[channel_payload(200, type=2)])
    )
    guild = state._get_guild(10)
    member = guild.get_member(1)

    state.parse_voice_state_update({'guild_id': '10', 'user_id': '1', 'channel_id': '200', 'session_id': 's'})
    assert member.voice.channel is guild.get_channel(200)

    state.parse_voice_state_update({'guild_id': '10', 'user_id': '1', 'channel_id': None, 'session_id': 's'})
    assert member.voice is None

    (first_member, before, after), (_, second_before, second_after) = events(dispatched, 'voice_state_update')
    assert first_member is member
    assert before is None
    assert after.channel.id == 200
    assert second_before.channel.id == 200
    assert second_after is None
