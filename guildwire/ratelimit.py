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
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, Union, TYPE_CHECKING

from . import utils
from .errors import (
    Forbidden,
    GuildwireException,
    HTTPException,
    NetworkError,
    NotFound,
    RateLimited,
    RequestTimeout,
    ServerError,
)

if TYPE_CHECKING:
    from aiohttp import ClientResponse

    from .http import Route

    Executor = Callable[['Request'], Awaitable[Tuple[ClientResponse, Union[Dict[str, Any], str]]]]

__all__ = (
    'Request',
    'Bucket',
    'RateLimiter',
)

_log = logging.getLogger(__name__)


class Request:
    """A single REST call waiting in a :class:`Bucket`.

    The request is resolved exactly once through :attr:`future`, with the
    response body on success or with an exception otherwise.

    Attributes
    -----------
    route: :class:`Route`
        The route being requested.
    kwargs: :class:`dict`
        The keyword arguments given to the executor, e.g. ``json``.
    deadline: Optional[:class:`float`]
        The loop time after which the request is no longer sent.
    retries: :class:`int`
        How many times the request has been sent again after a failure.
    """

    __slots__ = ('route', 'kwargs', 'deadline', 'future', 'retries')

    def __init__(
        self,
        route: Route,
        future: asyncio.Future[Any],
        *,
        deadline: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        self.route: Route = route
        self.future: asyncio.Future[Any] = future
        self.deadline: Optional[float] = deadline
        self.kwargs: Dict[str, Any] = kwargs
        self.retries: int = 0

    def __repr__(self) -> str:
        return f'<Request route={self.route.key!r} retries={self.retries}>'

    def is_done(self) -> bool:
        return self.future.done()

    def set_result(self, result: Any) -> None:
        if not self.future.done():
            self.future.set_result(result)

    def set_exception(self, exc: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(exc)


class Bucket:
    """Represents a rate limit bucket and its queue of requests.

    Only the worker draining the bucket changes :attr:`remaining`.

    Attributes
    -----------
    id: :class:`str`
        ``hash:major parameters``, or :attr:`RateLimiter.UNLIMITED`.
    limit: :class:`int`
        The number of requests allowed per window.
    remaining: :class:`int`
        The number of requests left in the current window.
    reset: :class:`float`
        The loop time at which the window resets.
    """

    __slots__ = ('id', 'limit', 'remaining', 'reset', 'requests', '_worker')

    def __init__(self, id: str) -> None:
        self.id: str = id
        self.limit: int = 1
        self.remaining: int = 1
        self.reset: float = 0.0
        self.requests: Deque[Request] = deque()
        self._worker: Optional[asyncio.Task[None]] = None

    def __repr__(self) -> str:
        return (
            f'<Bucket id={self.id!r} limit={self.limit} remaining={self.remaining} '
            f'pending_requests={len(self.requests)}>'
        )

    @property
    def is_unlimited(self) -> bool:
        return self.id == RateLimiter.UNLIMITED

    def is_active(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def reset_after(self, now: float) -> float:
        """Returns how long this bucket has to wait before its next request."""
        if self.remaining >= 1:
            return 0.0
        return max(0.0, self.reset - now)

    def update(self, response: ClientResponse, now: float, *, use_clock: bool = False) -> None:
        headers = response.headers
        try:
            self.limit = int(headers.get('X-Ratelimit-Limit', self.limit))
        except ValueError:
            pass

        if 'X-Ratelimit-Remaining' in headers:
            self.remaining = int(headers['X-Ratelimit-Remaining'])

        if 'X-Ratelimit-Reset-After' in headers or 'X-Ratelimit-Reset' in headers:
            self.reset = now + utils._parse_ratelimit_header(response, use_clock=use_clock)


class RateLimiter:
    """Queues REST requests per rate limit bucket and sends them in order.

    Until a route's bucket hash is known its requests share the
    :attr:`UNLIMITED` bucket. Once a response reveals the hash, pending
    requests for that route are moved to their own bucket.

    Parameters
    -----------
    executor
        A coroutine function that sends a :class:`Request` and returns the
        response and its decoded body. Transport failures are raised as
        :exc:`NetworkError`.
    use_clock: :class:`bool`
        Whether to compute resets from ``X-Ratelimit-Reset`` rather than
        ``X-Ratelimit-Reset-After``.
    cleanup_interval: :class:`float`
        Seconds between sweeps of idle buckets.
    max_server_retries: :class:`int`
        How many times a request that failed with a 5xx is sent again.
    """

    UNLIMITED = 'unlimited'

    def __init__(
        self,
        executor: Executor,
        *,
        use_clock: bool = False,
        cleanup_interval: float = 30.0,
        max_server_retries: int = 0,
    ) -> None:
        self._execute: Executor = executor
        self.use_clock: bool = use_clock
        self.cleanup_interval: float = cleanup_interval
        self.max_server_retries: int = max_server_retries
        # Route key -> Bucket hash
        self._hashes: Dict[str, str] = {}
        # Bucket ID -> Bucket
        self._buckets: Dict[str, Bucket] = {}
        self._global_reset: float = 0.0
        self._cleanup_task: Optional[asyncio.Task[None]] = None
        self._closed: bool = False

    def __repr__(self) -> str:
        return f'<RateLimiter buckets={len(self._buckets)} hashes={len(self._hashes)}>'

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return asyncio.get_running_loop()

    @property
    def buckets(self) -> Dict[str, Bucket]:
        return dict(self._buckets)

    def bucket_id(self, route: Route) -> str:
        try:
            bucket_hash = self._hashes[route.key]
        except KeyError:
            return self.UNLIMITED
        return f'{bucket_hash}:{route.major_parameters}'

    def _get_bucket(self, bucket_id: str) -> Bucket:
        try:
            return self._buckets[bucket_id]
        except KeyError:
            self._buckets[bucket_id] = bucket = Bucket(bucket_id)
            return bucket

    def get_rate_limit(self, route: Route) -> Optional[Bucket]:
        """Returns the bucket the route is currently queued under, if any."""
        return self._buckets.get(self.bucket_id(route))

    def global_reset_after(self) -> float:
        return max(0.0, self._global_reset - self.loop.time())

    # Submission

    def submit(self, route: Route, *, deadline: Optional[float] = None, **kwargs: Any) -> asyncio.Future[Any]:
        """Queues a request for the route.

        Returns a future resolved with the response body, or with the
        exception the request failed with.
        """
        loop = self.loop
        future = loop.create_future()
        request = Request(route, future, deadline=deadline, **kwargs)
        if self._closed:
            request.set_exception(GuildwireException('The rate limiter is closed.'))
            return future

        self._enqueue(self.bucket_id(route), request)

        if self._cleanup_task is None and self.cleanup_interval > 0:
            self._cleanup_task = loop.create_task(self._cleanup_loop())
        return future

    def _enqueue(self, bucket_id: str, request: Request) -> None:
        bucket = self._get_bucket(bucket_id)
        bucket.requests.append(request)
        self._ensure_worker(bucket)

    def _ensure_worker(self, bucket: Bucket) -> None:
        if bucket.is_active():
            return
        bucket._worker = self.loop.create_task(self._run(bucket))

    # Execution

    def _delay(self, bucket: Bucket) -> float:
        now = self.loop.time()
        if bucket.remaining < 1 and now >= bucket.reset:
            bucket.remaining = bucket.limit
        return max(self._global_reset - now, bucket.reset_after(now))

    async def _run(self, bucket: Bucket) -> None:
        try:
            while bucket.requests:
                delay = self._delay(bucket)
                if delay > 0:
                    _log.debug('Bucket %s is rate limited, waiting %.2f seconds.', bucket.id, delay)
                    await asyncio.sleep(delay)
                    continue

                request = bucket.requests[0]
                if request.is_done():
                    # cancelled by the caller before its turn
                    bucket.requests.popleft()
                    continue

                if bucket.is_unlimited:
                    target = self.bucket_id(request.route)
                    if target != self.UNLIMITED:
                        bucket.requests.popleft()
                        _log.debug('Moving %r from the unlimited bucket to %s.', request, target)
                        self._enqueue(target, request)
                        continue

                if request.deadline is not None and self.loop.time() > request.deadline:
                    bucket.requests.popleft()
                    request.set_exception(RequestTimeout(f'{request.route.method} {request.route.url} expired in queue'))
                    continue

                if await self._attempt(bucket, request):
                    bucket.requests.popleft()
        finally:
            bucket._worker = None

    async def _attempt(self, bucket: Bucket, request: Request) -> bool:
        """Sends the request once.

        Returns ``True`` when the request was resolved and can leave the queue.
        """
        route = request.route
        if not bucket.is_unlimited:
            bucket.remaining -= 1

        try:
            response, data = await self._execute(request)
        except NetworkError as exc:
            if isinstance(exc.original, asyncio.TimeoutError) and request.retries < 1:
                request.retries += 1
                _log.debug('%s %s timed out, retrying once.', route.method, route.url)
                return False
            request.set_exception(exc)
            return True
        except Exception as exc:
            _log.exception('Unexpected error while executing %r.', request)
            request.set_exception(exc)
            return True

        status = response.status
        self._update(bucket, request, response)

        if 300 > status >= 200:
            _log.debug('%s %s has received %s.', route.method, route.url, data)
            request.set_result(data)
            return True

        if status == 429:
            return self._handle_rate_limited(bucket, request, response, data)

        if status >= 500 and request.retries < self.max_server_retries:
            request.retries += 1
            _log.debug('%s %s failed with %s, retry %d.', route.method, route.url, status, request.retries)
            return False

        if status == 403:
            request.set_exception(Forbidden(response, data))
        elif status == 404:
            request.set_exception(NotFound(response, data))
        elif status >= 500:
            request.set_exception(ServerError(response, data))
        else:
            request.set_exception(HTTPException(response, data))
        return True

    def _handle_rate_limited(
        self, bucket: Bucket, request: Request, response: ClientResponse, data: Union[Dict[str, Any], str]
    ) -> bool:
        route = request.route
        if not isinstance(data, dict):
            # Banned by Cloudflare more than likely.
            retry_after = float(response.headers.get('Retry-After', 0))
            _log.warning('%s %s responded with a 429 that is not from the API.', route.method, route.url)
            request.set_exception(RateLimited(retry_after))
            return True

        now = self.loop.time()
        retry_after = float(data.get('retry_after', 0))
        is_global = data.get('global', False) or response.headers.get('X-Ratelimit-Global') == 'true'

        if is_global:
            _log.warning('Global rate limit has been hit. Retrying in %.2f seconds.', retry_after)
            self._global_reset = max(self._global_reset, now + retry_after)
            return False

        target = self._buckets.get(self.bucket_id(route), bucket)
        if target.remaining > 0:
            _log.debug(
                '%s %s received a 429 despite having %s remaining requests. This is a sub-ratelimit.',
                route.method,
                route.url,
                target.remaining,
            )

        _log.warning(
            'We are being rate limited. %s %s responded with 429. Retrying in %.2f seconds.',
            route.method,
            route.url,
            retry_after,
        )
        target.remaining = 0
        target.reset = max(target.reset, now + retry_after)
        return False

    def _update(self, bucket: Bucket, request: Request, response: ClientResponse) -> None:
        # No await in here: the hash table and the buckets change together.
        route = request.route
        route_key = route.key
        headers = response.headers
        discord_hash = headers.get('X-Ratelimit-Bucket')

        if discord_hash is not None:
            previous = self._hashes.get(route_key)
            if previous != discord_hash:
                if previous is not None:
                    _log.debug('A route (%s) has changed hashes: %s -> %s.', route_key, previous, discord_hash)
                else:
                    _log.debug('%s has found its initial rate limit bucket hash (%s).', route_key, discord_hash)
                self._hashes[route_key] = discord_hash

        if 'X-Ratelimit-Remaining' not in headers:
            return

        if bucket.is_unlimited:
            if discord_hash is None:
                return
            target = self._get_bucket(self.bucket_id(route))
        else:
            target = bucket

        target.update(response, self.loop.time(), use_clock=self.use_clock)
        if target.remaining == 0:
            _log.debug('A rate limit bucket (%s) has been exhausted. Pre-emptively rate limiting...', target.id)

    # Cleanup

    def cleanup(self) -> int:
        """Removes idle buckets whose reset has passed.

        The unlimited bucket is never removed. Returns the number of buckets
        removed.
        """
        now = self.loop.time()
        stale = [
            key
            for key, bucket in self._buckets.items()
            if not bucket.is_unlimited and not bucket.requests and not bucket.is_active() and bucket.reset <= now
        ]
        for key in stale:
            del self._buckets[key]

        if stale:
            _log.debug('Removed %d expired rate limit buckets.', len(stale))
        return len(stale)

    async def _cleanup_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    async def close(self) -> None:
        """Stops every worker and fails the requests still queued."""
        self._closed = True
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

        workers = []
        for bucket in self._buckets.values():
            if bucket._worker is not None:
                bucket._worker.cancel()
                workers.append(bucket._worker)

        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        for bucket in self._buckets.values():
            while bucket.requests:
                request = bucket.requests.popleft()
                request.set_exception(GuildwireException('The rate limiter was closed before the request was sent.'))
