from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from marketplace.oauth import (
    MarketplaceOAuth,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from utils.exceptions import CredentialError, NoCredentialError, TokenRefreshError


def test_code_challenge_matches_s256_reference() -> None:
    verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
    assert generate_code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_verifier_and_state_are_random() -> None:
    verifier = generate_code_verifier()
    assert len(verifier) >= 43
    assert verifier != generate_code_verifier()
    assert generate_state() != generate_state()


def test_authorization_url_carries_pkce_and_scopes(settings) -> None:
    oauth = MarketplaceOAuth(settings)
    url = oauth.build_authorization_url(
        state="abc",
        code_challenge="challenge",
        redirect_uri="http://localhost:8000/api/marketplace/auth/callback",
    )

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == settings.marketplace.auth_url
    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["test-key"]
    assert query["scope"] == ["listings_w listings_r shops_r transactions_r"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["abc"]


@pytest.mark.asyncio
async def test_refresh_posts_refresh_grant(settings) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"access_token": "a2", "refresh_token": "r2", "expires_in": 3600, "token_type": "Bearer"},
        )

    oauth = MarketplaceOAuth(settings, transport=httpx.MockTransport(handler))
    grant = await oauth.refresh("r1")

    assert grant.access_token == "a2"
    assert grant.expires_in == 3600
    assert str(seen[0].url) == settings.marketplace.token_url
    form = parse_qs(seen[0].content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["r1"]
    assert form["client_id"] == ["test-key"]


@pytest.mark.asyncio
async def test_rejected_refresh_raises_token_refresh_error_once(settings) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"error": "invalid_grant"})

    oauth = MarketplaceOAuth(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(TokenRefreshError) as exc_info:
        await oauth.refresh("revoked")

    assert exc_info.value.status == 401
    assert "refresh" in exc_info.value.message
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_refresh_with_unusable_body_raises(settings) -> None:
    oauth = MarketplaceOAuth(settings, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": 1})))
    with pytest.raises(TokenRefreshError):
        await oauth.refresh("r1")


@pytest.mark.asyncio
async def test_rejected_code_exchange_raises_credential_error(settings) -> None:
    oauth = MarketplaceOAuth(
        settings,
        transport=httpx.MockTransport(lambda request: httpx.Response(400, text="invalid code")),
    )
    with pytest.raises(CredentialError) as exc_info:
        await oauth.exchange_code(code="bad", code_verifier="v", redirect_uri="http://localhost/cb")

    assert not isinstance(exc_info.value, NoCredentialError)
    assert "exchange" in exc_info.value.message
    assert exc_info.value.details == {"status": 400}
