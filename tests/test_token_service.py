from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import TOKEN_URL
from rain_or_shine.errors import ErrorKind, TokenRefreshError
from rain_or_shine.services.token_service import TokenRefresher

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


def _refresher(upstream, metrics=None):
    return TokenRefresher(
        upstream.client(),
        client_id="client-id",
        client_secret="client-secret",
        token_url=TOKEN_URL,
        metrics=metrics,
        clock=lambda: NOW,
    )


def _token_response(request):
    return httpx.Response(200, json={
        "token_type": "Bearer",
        "access_token": "new-access-token",
        "refresh_token": "new-refresh-token",
        "expires_at": int((NOW + timedelta(hours=6)).timestamp()),
        "expires_in": 21600,
    })


async def test_token_at_exact_buffer_edge_is_refreshed(upstream):
    upstream.add("POST", TOKEN_URL, _token_response)
    refresher = _refresher(upstream)

    state = await refresher.ensure_valid_token("old-access", "old-refresh", NOW + timedelta(minutes=5))

    assert state.was_refreshed is True
    assert state.access_token == "new-access-token"
    assert state.refresh_token == "new-refresh-token"
    assert state.expires_at == NOW + timedelta(hours=6)
    assert len(upstream.calls("POST", TOKEN_URL)) == 1


async def test_token_just_outside_buffer_is_kept(upstream):
    upstream.add("POST", TOKEN_URL, _token_response)
    refresher = _refresher(upstream)
    expires_at = NOW + timedelta(minutes=5, milliseconds=1)

    state = await refresher.ensure_valid_token("old-access", "old-refresh", expires_at)

    assert state.was_refreshed is False
    assert state.access_token == "old-access"
    assert state.refresh_token == "old-refresh"
    assert state.expires_at == expires_at
    assert upstream.requests == []


async def test_expired_token_refresh_sends_client_credentials(upstream):
    upstream.add("POST", TOKEN_URL, _token_response)
    refresher = _refresher(upstream)

    await refresher.ensure_valid_token("old-access", "old-refresh", NOW - timedelta(hours=1))

    sent = parse_qs(upstream.requests[0].content.decode())
    assert sent == {
        "client_id": ["client-id"],
        "client_secret": ["client-secret"],
        "refresh_token": ["old-refresh"],
        "grant_type": ["refresh_token"],
    }


async def test_naive_expiry_is_treated_as_utc(upstream):
    upstream.add("POST", TOKEN_URL, _token_response)
    refresher = _refresher(upstream)

    state = await refresher.ensure_valid_token("a", "r", (NOW + timedelta(hours=2)).replace(tzinfo=None))

    assert state.was_refreshed is False


async def test_failed_refresh_raises_with_status_and_body(upstream):
    upstream.add("POST", TOKEN_URL, lambda request: httpx.Response(400, text='{"message":"Bad Request"}'))
    metrics = MagicMock()
    refresher = _refresher(upstream, metrics)

    with pytest.raises(TokenRefreshError) as exc_info:
        await refresher.ensure_valid_token("a", "r", NOW)

    assert exc_info.value.status_code == 400
    assert "Bad Request" in exc_info.value.body
    assert exc_info.value.kind == ErrorKind.AUTH_EXPIRED
    # exactly one attempt, no internal retry
    assert len(upstream.calls("POST", TOKEN_URL)) == 1
    metrics.record_token_refresh.assert_called_once()
    assert metrics.record_token_refresh.call_args.args[0] is False


async def test_network_error_during_refresh_raises(upstream):
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.add("POST", TOKEN_URL, boom)
    refresher = _refresher(upstream)

    with pytest.raises(TokenRefreshError) as exc_info:
        await refresher.ensure_valid_token("a", "r", NOW)
    assert exc_info.value.status_code == 0


@pytest.mark.parametrize("body", [
    {"json": {"access_token": "a"}},
    {"json": {"access_token": "a", "refresh_token": "r", "expires_at": "soon"}},
    {"json": ["not", "an", "object"]},
    {"text": "<html>maintenance</html>"},
])
async def test_malformed_refresh_response_raises(upstream, body):
    upstream.add("POST", TOKEN_URL, lambda request: httpx.Response(200, **body))
    metrics = MagicMock()
    refresher = _refresher(upstream, metrics)

    with pytest.raises(TokenRefreshError) as exc_info:
        await refresher.ensure_valid_token("a", "r", NOW)

    assert exc_info.value.status_code == 200
    assert exc_info.value.body == "malformed token response"
    assert metrics.record_token_refresh.call_args.args[0] is False
