"""
Marketplace OAuth
PKCE authorization-code flow and refresh-token grant against the Etsy token endpoint
"""
import base64
import hashlib
import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from config import Settings, get_settings
from utils.exceptions import CredentialError, TokenRefreshError


logger = logging.getLogger(__name__)


class TokenGrant(BaseModel):
    """Token endpoint response"""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


def generate_code_verifier() -> str:
    """43-char base64url verifier from 32 random bytes"""
    return secrets.token_urlsafe(32)


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    return secrets.token_hex(16)


class MarketplaceOAuth:
    """
    Token endpoint calls.

    These are deliberately single-shot: a rejected grant is fatal and is
    never retried, so a revoked refresh token cannot put callers in a loop.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._timeout = float(timeout if timeout is not None else self.settings.http.request_timeout)

    @property
    def scopes(self) -> str:
        return self.settings.marketplace.scopes

    def build_authorization_url(self, *, state: str, code_challenge: str, redirect_uri: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.settings.marketplace.api_key,
            "redirect_uri": redirect_uri,
            "scope": self.scopes,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.settings.marketplace.auth_url}?{urlencode(params)}"

    async def exchange_code(self, *, code: str, code_verifier: str, redirect_uri: str) -> TokenGrant:
        """Trade an authorization code for the first token pair"""
        form = {
            "grant_type": "authorization_code",
            "client_id": self.settings.marketplace.api_key,
            "redirect_uri": redirect_uri,
            "code": code,
            "code_verifier": code_verifier,
        }
        try:
            return await self._token_call(form, action="exchange")
        except TokenRefreshError as exc:
            raise CredentialError(exc.message, {"status": exc.status}) from exc

    async def refresh(self, refresh_token: str) -> TokenGrant:
        form = {
            "grant_type": "refresh_token",
            "client_id": self.settings.marketplace.api_key,
            "refresh_token": refresh_token,
        }
        return await self._token_call(form, action="refresh")

    async def _token_call(self, form: dict, *, action: str) -> TokenGrant:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.settings.marketplace.token_url, data=form)
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Marketplace token {action} failed: {exc}") from exc

        if not response.is_success:
            raise TokenRefreshError(
                f"Marketplace token {action} failed ({response.status_code}): {response.text[:200]}",
                status=response.status_code,
            )

        try:
            return TokenGrant.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise TokenRefreshError(
                f"Marketplace token {action} returned an unusable body: {response.text[:200]}",
                status=response.status_code,
            ) from exc
