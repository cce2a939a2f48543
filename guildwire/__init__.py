"""
Guildwire
~~~~~~~~~

A rate limit aware REST client and guild cache for the Discord API.

:copyright: (c) 2015-present Rapptz
:license: MIT, see LICENSE for more details.

"""

__title__ = 'guildwire'
__author__ = 'Rapptz'
__license__ = 'MIT'
__copyright__ = 'Copyright 2015-present Rapptz'
__version__ = '0.1.0'

import logging
from typing import NamedTuple, Literal

from .client import *
from .user import *
from .channel import *
from .guild import *
from .member import *
from .role import *
from .errors import *
from .enums import *
from .cache import *
from .ratelimit import *
from .http import *
from .gateway import *
from .guild_setup import *
from .builder import *
from .state import *
from .backoff import *
from . import utils as utils


class VersionInfo(NamedTuple):
    major: int
    minor: int
    micro: int
    releaselevel: Literal['alpha', 'beta', 'candidate', 'final']
    serial: int


version_info: VersionInfo = VersionInfo(major=0, minor=1, micro=0, releaselevel='final', serial=0)

logging.getLogger(__name__).addHandler(logging.NullHandler())

del logging, NamedTuple, Literal, VersionInfo
