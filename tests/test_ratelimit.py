"""

Tests for guildwire.ratelimit

"""

import asyncio

import pytest

from guildwire.errors import GuildwireException, NetworkError, RateLimited, RequestTimeout, ServerError
from guildwire.http import Route
from guildwire.ratelimit import RateLimiter

from helpers import FakeResponse, ratelimit_headers


async def drain(limiter: RateLimiter) -> None:
    # wait until every worker went idle
    while True:
        workers = [b._worker for b in limiter.buckets.values() if b._worker is not None]
        if not workers:
            return
        await asyncio.gather(*workers)


class Recorder:
    """An executor that answers every request through ``respond``."""

    def __init__(self, respond):
        self.respond = respond
        self.calls = []

    async def __call__(self, request):
        loop = asyncio.get_running_loop()
        self.calls.append((loop.time(), request))
        result = self.respond(request, len(self.calls))
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.mark.asyncio
async def test_requests_in_a_bucket_run_in_submission_order():
    route = Route('POST', '/channels/{channel_id}/messages', channel_id=123)

    def respond(request, n):
        headers = ratelimit_headers('abcd', limit=5, remaining=5 - n, reset_after=0.0)
        return FakeResponse(200, request.kwargs['json'], headers=headers), request.kwargs['json']

    executor = Recorder(respond)
    limiter = RateLimiter(executor, cleanup_interval=0)

    futures = [limiter.submit(route, json={'n': n}) for n in range(5)]
    results = await asyncio.gather(*futures)

    assert results == [{'n': n} for n in range(5)]
    assert [request.kwargs['json']['n'] for _, request in executor.calls] == list(range(5))
    await drain(limiter)


@pytest.mark.asyncio
async def test_route_moves_from_unlimited_bucket_once_hash_is_known():
    route = Route('GET', '/guilds/{guild_id}', guild_id=42)

    def respond(request, n):
        return FakeResponse(200, {}, headers=ratelimit_headers('h1', limit=10, remaining=9)), {}

    limiter = RateLimiter(Recorder(respond), cleanup_interval=0)
    assert limiter.bucket_id(route) == RateLimiter.UNLIMITED

    await asyncio.gather(limiter.submit(route), limiter.submit(route))

    assert limiter.bucket_id(route) == 'h1:42'
    bucket = limiter.get_rate_limit(route)
    assert bucket is not None
    assert bucket.limit == 10
    assert RateLimiter.UNLIMITED in limiter.buckets

    # another major parameter shares the hash but not the bucket
    other = Route('GET', '/guilds/{guild_id}', guild_id=43)
    assert limiter.bucket_id(other) == 'h1:43'
    await drain(limiter)


@pytest.mark.asyncio
async def test_429_keeps_the_request_and_retries_after_backoff():
    route = Route('GET', '/channels/{channel_id}', channel_id=1)

    def respond(request, n):
        if n == 1:
            headers = ratelimit_headers('h2', limit=1, remaining=0, reset_after=0.05)
            return FakeResponse(429, {'retry_after': 0.05, 'global': False}, headers=headers), {
                'retry_after': 0.05,
                'global': False,
            }
        headers = ratelimit_headers('h2', limit=1, remaining=0, reset_after=0.05)
        return FakeResponse(200, {'id': '1'}, headers=headers), {'id': '1'}

    executor = Recorder(respond)
    limiter = RateLimiter(executor, cleanup_interval=0)

    result = await limiter.submit(route)

    assert result == {'id': '1'}
    assert len(executor.calls) == 2
    first, second = executor.calls[0][0], executor.calls[1][0]
    assert second - first >= 0.04
    await drain(limiter)


@pytest.mark.asyncio
async def test_global_rate_limit_pauses_every_bucket():
    first = Route('GET', '/channels/{channel_id}', channel_id=1)
    second = Route('GET', '/guilds/{guild_id}', guild_id=2)

    def respond(request, n):
        if request.route is first and n == 1:
            data = {'retry_after': 0.1, 'global': True}
            return FakeResponse(429, data, headers={'X-Ratelimit-Global': 'true'}), data
        return FakeResponse(200, {}), {}

    executor = Recorder(respond)
    limiter = RateLimiter(executor, cleanup_interval=0)
    limiter._hashes[first.key] = 'ha'
    limiter._hashes[second.key] = 'hb'

    loop = asyncio.get_running_loop()
    start = loop.time()
    pending = limiter.submit(first)
    await asyncio.sleep(0.01)
    assert limiter.global_reset_after() > 0

    await asyncio.gather(pending, limiter.submit(second))

    times = {request.route.key: t for t, request in executor.calls[1:]}
    assert times[second.key] - start >= 0.09
    assert times[first.key] - start >= 0.09
    await drain(limiter)


@pytest.mark.asyncio
async def test_non_json_429_is_a_hard_failure():
    route = Route('GET', '/gateway')

    def respond(request, n):
        return FakeResponse(429, '<html>banned</html>', headers={'Retry-After': '30'}), '<html>banned</html>'

    executor = Recorder(respond)
    limiter = RateLimiter(executor, cleanup_interval=0)

    with pytest.raises(RateLimited) as excinfo:
        await limiter.submit(route)

    assert excinfo.value.retry_after == 30.0
    assert len(executor.calls) == 1
    await drain(limiter)


@pytest.mark.asyncio
async def test_expired_deadline_fails_without_a_network_call():
    route = Route('GET', '/gateway')
    executor = Recorder(lambda request, n: (FakeResponse(200, {}), {}))
    limiter = RateLimiter(executor, cleanup_interval=0)

    loop = asyncio.get_running_loop()
    with pytest.raises(RequestTimeout):
        await limiter.submit(route, deadline=loop.time() - 1.0)

    assert executor.calls == []
    await drain(limiter)


@pytest.mark.asyncio
async def test_timeout_class_network_error_is_retried_once():
    route = Route('GET', '/gateway')

    def respond(request, n):
        if n == 1:
            return NetworkError(asyncio.TimeoutError())
        return FakeResponse(200, {'url': 'wss://example'}), {'url': 'wss://example'}

    executor = Recorder(respond)
    limiter = RateLimiter(executor, cleanup_interval=0)

    assert await limiter.submit(route) == {'url': 'wss://example'}
    assert len(executor.calls) == 2
    await drain(limiter)


@pytest.mark.asyncio
async def test_other_network_errors_surface_immediately():
    route = Route('GET', '/gateway')
    executor = Recorder(lambda request, n: NetworkError(ConnectionResetError()))
    limiter = RateLimiter(executor, cleanup_interval=0)

    with pytest.raises(NetworkError) as excinfo:
        await limiter.submit(route)

    assert isinstance(excinfo.value.original, ConnectionResetError)
    assert len(executor.calls) == 1
    await drain(limiter)


@pytest.mark.asyncio
async def test_server_errors_follow_retry_policy():
    route = Route('GET', '/gateway')

    def respond(request, n):
        if n == 1:
            return FakeResponse(502, 'bad gateway', reason='Bad Gateway'), 'bad gateway'
        return FakeResponse(200, {}), {}

    retrying = RateLimiter(Recorder(respond), cleanup_interval=0, max_server_retries=1)
    assert await retrying.submit(route) == {}
    await drain(retrying)

    strict = RateLimiter(Recorder(respond), cleanup_interval=0)
    with pytest.raises(ServerError) as excinfo:
        await strict.submit(route)
    assert excinfo.value.status == 502
    await drain(strict)


@pytest.mark.asyncio
async def test_cleanup_removes_idle_buckets_but_keeps_unlimited():
    route = Route('GET', '/guilds/{guild_id}', guild_id=7)

    def respond(request, n):
        return FakeResponse(200, {}, headers=ratelimit_headers('h3', remaining=4, reset_after=0.0)), {}

    limiter = RateLimiter(Recorder(respond), cleanup_interval=0)
    await limiter.submit(route)
    await limiter.submit(route)
    await drain(limiter)

    assert 'h3:7' in limiter.buckets
    assert limiter.cleanup() == 1
    assert 'h3:7' not in limiter.buckets
    assert RateLimiter.UNLIMITED in limiter.buckets
    # the hash survives, a new bucket is created on demand
    assert limiter.bucket_id(route) == 'h3:7'


@pytest.mark.asyncio
async def test_cancelled_request_is_skipped():
    route = Route('GET', '/gateway')
    gate = asyncio.Event()

    async def execute(request):
        await gate.wait()
        return FakeResponse(200, request.kwargs['json']), request.kwargs['json']

    limiter = RateLimiter(execute, cleanup_interval=0)
    first = limiter.submit(route, json=1)
    second = limiter.submit(route, json=2)
    third = limiter.submit(route, json=3)
    second.cancel()
    gate.set()

    assert await first == 1
    assert await third == 3
    await drain(limiter)


@pytest.mark.asyncio
async def test_close_fails_pending_requests():
    route = Route('GET', '/gateway')
    gate = asyncio.Event()

    async def execute(request):
        await gate.wait()
        return FakeResponse(200, {}), {}

    limiter = RateLimiter(execute, cleanup_interval=0)
    first = limiter.submit(route)
    second = limiter.submit(route)
    await asyncio.sleep(0)

    await limiter.close()

    with pytest.raises(GuildwireException):
        await first
    with pytest.raises(GuildwireException):
        await second
    with pytest.raises(GuildwireException):
        await limiter.submit(route)
