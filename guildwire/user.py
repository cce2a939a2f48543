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

from typing import Any, Dict, Optional, TYPE_CHECKING

from . import utils
from .mixins import Hashable

if TYPE_CHECKING:
    import datetime

    from .state import ConnectionState

__all__ = (
    'User',
    'ClientUser',
)


class User(Hashable):
    """A Discord account seen by this connection.

    Users are shared. Every :class:`Member` for the same account refers to
    the one cached instance, which lives for as long as a guild still
    holds a member for it.

    Attributes
    -----------
    id: :class:`int`
        Snowflake of the account.
    name: :class:`str`
        Username.
    discriminator: :class:`str`
        Legacy four digit tag, ``'0'`` for migrated accounts.
    global_name: Optional[:class:`str`]
        Display name chosen by the account.
    avatar: Optional[:class:`str`]
        Avatar hash.
    bot: :class:`bool`
        Whether this is a bot account.
    """

    __slots__ = ('id', 'name', 'discriminator', 'global_name', 'avatar', 'bot', '_state')

    def __init__(self, *, state: ConnectionState, data: Dict[str, Any]) -> None:
        self._state = state
        self.id: int = int(data['id'])
        self._update(data)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} id={self.id} name={self.name!r} bot={self.bot}>'

    def __str__(self) -> str:
        # migrated accounts no longer carry a tag
        if self.discriminator in ('0', '0000'):
            return self.name
        return f'{self.name}#{self.discriminator}'

    def _update(self, data: Dict[str, Any]) -> None:
        self.name: str = data.get('username', '')
        self.discriminator: str = data.get('discriminator', '0')
        self.global_name: Optional[str] = data.get('global_name')
        self.avatar: Optional[str] = data.get('avatar')
        self.bot: bool = data.get('bot', False)

    @property
    def display_name(self) -> str:
        return self.global_name or self.name

    @property
    def mention(self) -> str:
        return f'<@{self.id}>'

    @property
    def created_at(self) -> datetime.datetime:
        """:class:`datetime.datetime`: Account creation time, taken from the snowflake."""
        return utils.snowflake_time(self.id)


class ClientUser(User):
    """The account this connection is logged in as.

    Attributes
    -----------
    verified: :class:`bool`
        The account's email address is verified.
    mfa_enabled: :class:`bool`
        Two factor authentication is enabled.
    """

    __slots__ = ('verified', 'mfa_enabled')

    def _update(self, data: Dict[str, Any]) -> None:
        super()._update(data)
        self.verified: bool = data.get('verified', False)
        self.mfa_enabled: bool = data.get('mfa_enabled', False)
