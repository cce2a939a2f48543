"""

Tests for guildwire.enums

"""

from guildwire.enums import ChannelType, OverwriteType, try_enum


def test_try_enum_known_value():
    assert try_enum(ChannelType, 4) is ChannelType.category
    assert str(ChannelType.category) == 'category'


def test_try_enum_unknown_value():
    value = try_enum(ChannelType, 99)

    assert isinstance(value, ChannelType)
    assert value.name == 'unknown_99'
    assert value.value == 99
    assert value != ChannelType.text


def test_try_enum_unhashable_value():
    value = try_enum(OverwriteType, [1])
    assert value.value == [1]
    assert value not in (OverwriteType.role, OverwriteType.member)
