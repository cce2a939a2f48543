"""

Tests for guildwire.http

"""

import asyncio
import json

import aiohttp
import pytest

from guildwire.errors import HTTPException, LoginFailure, NetworkError, NotFound, RequestTimeout
from guildwire.http import HTTPClient, Route

from helpers import FakeResponse, FakeSession, ratelimit_headers


def make_http(*responses, **options):
    session = FakeSession(*responses)
    http = HTTPClient(asyncio.get_running_loop(), session=session, bucket_cleanup_interval=0, **options)  # type: ignore
    http.token = 'secret'
    return http, session


def test_route_key_and_major_parameters():
    route = Route('PATCH', '/guilds/{guild_id}/roles/{role_id}', guild_id=10, role_id=20)
    assert route.key == 'PATCH /guilds/{guild_id}/roles/{role_id}'
    assert route.major_parameters == '10'
    assert route.url == Route.BASE + '/guilds/10/roles/20'

    webhook = Route('POST', '/webhooks/{webhook_id}/{webhook_token}', webhook_id=5, webhook_token='a b')
    assert webhook.major_parameters == '5'
    assert webhook.url.endswith('/webhooks/5/a%20b')

    assert Route('GET', '/gateway').major_parameters == ''


@pytest.mark.asyncio
async def test_request_sends_auth_reason_and_json():
    http, session = make_http(FakeResponse(200, {'id': '20'}))

    data = await http.edit_role(10, 20, name='mods', hoist=True, bogus=1, reason='promotion')

    assert data == {'id': '20'}
    call = session.calls[0]
    assert call['method'] == 'PATCH'
    assert call['url'] == Route.BASE + '/guilds/10/roles/20'
    headers = call['headers']
    assert headers['Authorization'] == 'Bot secret'
    assert headers['X-Audit-Log-Reason'] == 'promotion'
    assert headers['Content-Type'] == 'application/json'
    assert headers['User-Agent'] == http.user_agent
    assert json.loads(call['data']) == {'name': 'mods', 'hoist': True}
    await http.close()


@pytest.mark.asyncio
async def test_user_tokens_are_sent_without_prefix():
    http, session = make_http(FakeResponse(204, ''))
    http.bot_token = False

    await http.kick(1, 2)

    headers = session.calls[0]['headers']
    assert headers['Authorization'] == 'secret'
    assert 'X-Audit-Log-Reason' not in headers
    assert 'data' not in session.calls[0]
    await http.close()


@pytest.mark.asyncio
async def test_error_body_is_flattened():
    body = {
        'code': 50035,
        'message': 'Invalid Form Body',
        'errors': {'name': {'_errors': [{'code': 'BASE_TYPE_REQUIRED', 'message': 'This field is required'}]}},
    }
    http, _ = make_http(FakeResponse(400, body, reason='Bad Request'))

    with pytest.raises(HTTPException) as excinfo:
        await http.edit_channel(5, name='')

    exc = excinfo.value
    assert exc.status == 400
    assert exc.code == 50035
    assert exc.text == 'Invalid Form Body\nIn name: This field is required'
    assert str(exc).startswith('400 Bad Request (error code: 50035)')
    await http.close()


@pytest.mark.asyncio
async def test_not_found_is_raised_for_404():
    http, _ = make_http(FakeResponse(404, {'code': 10004, 'message': 'Unknown Guild'}, reason='Not Found'))

    with pytest.raises(NotFound) as excinfo:
        await http.get_guild(99)

    assert excinfo.value.code == 10004
    await http.close()


@pytest.mark.asyncio
async def test_transport_failure_becomes_network_error():
    http, _ = make_http(aiohttp.ClientConnectionError('reset'))

    with pytest.raises(NetworkError) as excinfo:
        await http.get_me()

    assert isinstance(excinfo.value.original, aiohttp.ClientConnectionError)
    await http.close()


@pytest.mark.asyncio
async def test_timeout_expires_request_waiting_behind_rate_limit():
    headers = ratelimit_headers('msg', limit=1, remaining=0, reset_after=0.2)
    http, session = make_http(FakeResponse(200, {'id': '1'}, headers=headers), FakeResponse(200, {'id': '2'}))

    await http.send_message(7, content='first')
    with pytest.raises(RequestTimeout):
        await http.request(Route('POST', '/channels/{channel_id}/messages', channel_id=7), timeout=0.01, json={})

    assert len(session.calls) == 1
    await http.close()


@pytest.mark.asyncio
async def test_get_gateway_formats_url():
    http, _ = make_http(FakeResponse(200, {'url': 'wss://gateway.example'}))

    url = await http.get_gateway()

    assert url == 'wss://gateway.example?encoding=json&v=10&compress=zlib-stream'
    await http.close()


@pytest.mark.asyncio
async def test_static_login_rejects_bad_token():
    http, session = make_http(FakeResponse(401, {'code': 0, 'message': '401: Unauthorized'}, reason='Unauthorized'))
    http.token = None

    with pytest.raises(LoginFailure):
        await http.static_login('bad')

    assert http.token is None
    assert session.calls[0]['headers']['Authorization'] == 'Bot bad'
    await http.close()
    assert session.closed
