"""

Test doubles for the REST session, the gateway socket and raw payloads

"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from guildwire.state import ConnectionState


class FakeResponse:
    def __init__(self, status: int = 200, data: Any = None, *, headers: Optional[Dict[str, str]] = None, reason: str = 'OK'):
        self.status = status
        self.reason = reason
        self.headers: Dict[str, str] = dict(headers or {})
        self.data = data
        if isinstance(data, (dict, list)):
            self.headers.setdefault('content-type', 'application/json')

    async def text(self, encoding: str = 'utf-8') -> str:
        if isinstance(self.data, (dict, list)):
            return json.dumps(self.data)
        return self.data or ''


class _RequestContext:
    def __init__(self, response: FakeResponse):
        self.response = response

    async def __aenter__(self) -> FakeResponse:
        return self.response

    async def __aexit__(self, *args: Any) -> None:
        pass


class FakeSession:
    """Replays scripted responses, or raises scripted exceptions, in order."""

    def __init__(self, *responses: Any):
        self.responses: List[Any] = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> _RequestContext:
        self.calls.append({'method': method, 'url': url, **kwargs})
        result = self.responses.pop(0)
        if isinstance(result, BaseException):
            raise result
        return _RequestContext(result)

    async def close(self) -> None:
        self.closed = True


class FakeGateway:
    def __init__(self):
        self.chunk_frames: List[Any] = []
        self.chunk_requests: List[int] = []
        self.sync_requests: List[int] = []

    async def request_chunks(self, guild_ids: Any, query: str = '', *, limit: int = 0) -> None:
        self.chunk_frames.append(guild_ids)
        self.chunk_requests.extend(guild_ids if isinstance(guild_ids, list) else [guild_ids])

    async def request_sync(self, guild_id: int) -> None:
        self.sync_requests.append(guild_id)


class FakeSocket:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.close_code = None

    async def send_str(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, *, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code


def ratelimit_headers(bucket: str = 'abcd', *, limit: int = 5, remaining: int = 4, reset_after: float = 0.0) -> Dict[str, str]:
    return {
        'X-Ratelimit-Bucket': bucket,
        'X-Ratelimit-Limit': str(limit),
        'X-Ratelimit-Remaining': str(remaining),
        'X-Ratelimit-Reset-After': str(reset_after),
    }


def make_state(**options: Any):
    """Returns a connection state wired to a list of dispatched events and a fake gateway."""
    dispatched: List[Any] = []

    def dispatch(event: str, *args: Any) -> None:
        dispatched.append((event, args))

    options.setdefault('guild_ready_timeout', 0.01)
    state = ConnectionState(dispatch=dispatch, handlers={}, hooks={}, http=None, **options)  # type: ignore
    state.loop = asyncio.get_running_loop()
    gateway = FakeGateway()
    state._update_references(gateway)  # type: ignore
    return state, dispatched, gateway


def events(dispatched: List[Any], name: str) -> List[Any]:
    return [args for event, args in dispatched if event == name]


def user_payload(user_id: int) -> Dict[str, Any]:
    return {'id': str(user_id), 'username': f'user{user_id}', 'discriminator': '0'}


def member_payload(user_id: int, *, roles: Any = (), nick: Optional[str] = None) -> Dict[str, Any]:
    return {
        'user': user_payload(user_id),
        'roles': [str(r) for r in roles],
        'nick': nick,
        'joined_at': '2021-01-01T00:00:00+00:00',
        'deaf': False,
        'mute': False,
    }


def role_payload(role_id: int, *, name: Optional[str] = None, position: int = 0) -> Dict[str, Any]:
    return {'id': str(role_id), 'name': name or f'role{role_id}', 'position': position, 'permissions': '0'}


def channel_payload(
    channel_id: int, *, type: int = 0, position: int = 0, overwrites: Any = (), parent_id: Optional[int] = None
) -> Dict[str, Any]:
    return {
        'id': str(channel_id),
        'type': type,
        'name': f'channel{channel_id}',
        'position': position,
        'parent_id': str(parent_id) if parent_id is not None else None,
        'permission_overwrites': list(overwrites),
    }


def guild_payload(
    guild_id: int,
    *,
    member_count: Optional[int] = None,
    members: Any = (),
    roles: Any = None,
    channels: Any = (),
    voice_states: Any = (),
    owner_id: Optional[int] = None,
) -> Dict[str, Any]:
    if roles is None:
        roles = [role_payload(guild_id, name='@everyone')]

    payload = {
        'id': str(guild_id),
        'name': f'guild{guild_id}',
        'owner_id': str(owner_id) if owner_id is not None else None,
        'roles': list(roles),
        'members': list(members),
        'channels': list(channels),
        'voice_states': list(voice_states),
        'features': [],
    }
    if member_count is not None:
        payload['member_count'] = member_count
    return payload
