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

import enum
from typing import Any, Type, TypeVar

__all__ = (
    'Enum',
    'ChannelType',
    'GuildSetupState',
    'VerificationLevel',
    'ContentFilter',
    'NotificationLevel',
    'OverwriteType',
    'try_enum',
)

E = TypeVar('E', bound='Enum')


class Enum(enum.Enum):
    """Base of the API enums.

    Values the API sends that are not listed here are kept as
    ``unknown_<value>`` members by :func:`try_enum` instead of failing the
    whole payload.
    """

    def __str__(self) -> str:
        return self.name


def try_enum(cls: Type[E], val: Any) -> E:
    """Returns the member of ``cls`` for ``val``, or an unknown member carrying ``val``."""
    try:
        return cls(val)
    except (ValueError, TypeError):
        unknown = object.__new__(cls)
        unknown._name_ = f'unknown_{val}'
        unknown._value_ = val
        return unknown


class ChannelType(Enum):
    text = 0
    voice = 2
    category = 4
    news = 5
    stage_voice = 13
    forum = 15


class OverwriteType(Enum):
    role = 0
    member = 1


class GuildSetupState(Enum):
    """How far the construction of a guild snapshot has come.

    A guild moves from ``unavailable`` or ``initializing`` to ``ready``,
    either directly or through ``awaiting_chunks`` and ``collecting``
    when its member list has to be requested over the gateway.
    """

    unavailable = 0
    initializing = 1
    awaiting_chunks = 2
    collecting = 3
    ready = 4


class VerificationLevel(Enum):
    none = 0
    low = 1
    medium = 2
    high = 3
    highest = 4


class ContentFilter(Enum):
    disabled = 0
    no_role = 1
    all_members = 2


class NotificationLevel(Enum):
    all_messages = 0
    only_mentions = 1
