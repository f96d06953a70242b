from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core import Credential
from marketplace.credentials import CredentialManager
from marketplace.oauth import TokenGrant
from utils.exceptions import NoCredentialError, TokenRefreshError


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _FakeOAuth:
    scopes = "listings_w listings_r shops_r transactions_r"

    def __init__(self, *, fail: bool = False) -> None:
        self.refresh_calls = []
        self.exchange_calls = []
        self.fail = fail

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(0)
        if self.fail:
            raise TokenRefreshError("Marketplace token refresh failed (400): invalid_grant", status=400)
        return TokenGrant(access_token="fresh-access", refresh_token="fresh-refresh", expires_in=3600)

    async def exchange_code(self, *, code: str, code_verifier: str, redirect_uri: str) -> TokenGrant:
        self.exchange_calls.append((code, code_verifier, redirect_uri))
        return TokenGrant(access_token="first-access", refresh_token="first-refresh", expires_in=3600)


async def _seed(store, expires_in: timedelta) -> Credential:
    return await store.replace_credential(
        Credential(
            access_token="stored-access",
            refresh_token="stored-refresh",
            expires_at=NOW + expires_in,
            scopes="listings_w shops_r",
        )
    )


def _manager(store, settings, oauth) -> CredentialManager:
    return CredentialManager(store, oauth, settings, now=lambda: NOW)


@pytest.mark.asyncio
async def test_token_valid_beyond_margin_is_reused(store, settings) -> None:
    await _seed(store, timedelta(minutes=10))
    oauth = _FakeOAuth()

    token = await _manager(store, settings, oauth).get_valid_token()

    assert token == "stored-access"
    assert oauth.refresh_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("remaining", [timedelta(minutes=4), timedelta(minutes=5), timedelta(seconds=-30)])
async def test_token_inside_margin_is_refreshed_and_replaced(store, settings, remaining) -> None:
    await _seed(store, remaining)
    oauth = _FakeOAuth()

    token = await _manager(store, settings, oauth).get_valid_token()

    assert token == "fresh-access"
    assert oauth.refresh_calls == ["stored-refresh"]
    stored = await store.get_credential()
    assert stored.access_token == "fresh-access"
    assert stored.refresh_token == "fresh-refresh"
    assert stored.expires_at == NOW + timedelta(seconds=3600)
    assert stored.scopes == "listings_w shops_r"


@pytest.mark.asyncio
async def test_refresh_failure_is_a_credential_fault(store, settings) -> None:
    await _seed(store, timedelta(minutes=1))
    oauth = _FakeOAuth(fail=True)

    with pytest.raises(NoCredentialError) as exc_info:
        await _manager(store, settings, oauth).get_valid_token()

    assert isinstance(exc_info.value, TokenRefreshError)
    assert len(oauth.refresh_calls) == 1
    stored = await store.get_credential()
    assert stored.access_token == "stored-access"


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(store, settings) -> None:
    await _seed(store, timedelta(minutes=2))
    oauth = _FakeOAuth()
    manager = _manager(store, settings, oauth)

    tokens = await asyncio.gather(*(manager.get_valid_token() for _ in range(3)))

    assert tokens == ["fresh-access"] * 3
    assert len(oauth.refresh_calls) == 1


@pytest.mark.asyncio
async def test_static_token_used_when_nothing_stored(store, settings) -> None:
    settings.marketplace.access_token = "static-token"
    oauth = _FakeOAuth()

    assert await _manager(store, settings, oauth).get_valid_token() == "static-token"
    assert oauth.refresh_calls == []


@pytest.mark.asyncio
async def test_no_stored_or_static_token_raises(store, settings) -> None:
    with pytest.raises(NoCredentialError):
        await _manager(store, settings, _FakeOAuth()).get_valid_token()


@pytest.mark.asyncio
async def test_complete_authorization_stores_first_credential(store, settings) -> None:
    oauth = _FakeOAuth()
    manager = _manager(store, settings, oauth)

    before = await manager.connection_status()
    credential = await manager.complete_authorization(
        code="auth-code",
        code_verifier="verifier",
        redirect_uri="http://testserver/api/marketplace/auth/callback",
    )
    after = await manager.connection_status()

    assert oauth.exchange_calls[0][0] == "auth-code"
    assert credential.access_token == "first-access"
    assert credential.scopes == oauth.scopes
    assert before["connected"] is False
    assert after["connected"] is True
    assert after["expires_at"] == (NOW + timedelta(hours=1)).isoformat()
    assert await manager.get_valid_token() == "first-access"
