"""
Credential Manager
Resolves a usable access token before every authenticated marketplace call
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from config import Settings, get_settings
from core import Credential
from storage import BaseStateStore
from utils.exceptions import NoCredentialError

from .oauth import MarketplaceOAuth, TokenGrant


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    """
    Token lifecycle for the marketplace.

    - stored credential still valid beyond the safety margin: returned as is
    - inside the margin: refreshed once, stored pair replaced wholesale
    - nothing stored: static token from settings (no refresh), else NoCredentialError
    """

    def __init__(
        self,
        store: BaseStateStore,
        oauth: Optional[MarketplaceOAuth] = None,
        settings: Optional[Settings] = None,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self._store = store
        self._oauth = oauth or MarketplaceOAuth(self.settings)
        self._now = now
        self._margin = timedelta(seconds=float(self.settings.http.token_refresh_margin))
        self._refresh_lock = asyncio.Lock()

    def needs_refresh(self, credential: Credential) -> bool:
        return credential.expires_at <= self._now() + self._margin

    async def get_valid_token(self) -> str:
        stored = await self._store.get_credential()
        if stored is None:
            return self._static_token()
        if not self.needs_refresh(stored):
            return stored.access_token

        async with self._refresh_lock:
            # A concurrent caller may have refreshed while we waited.
            stored = await self._store.get_credential()
            if stored is None:
                return self._static_token()
            if not self.needs_refresh(stored):
                return stored.access_token

            logger.info(f"Marketplace token expires at {stored.expires_at.isoformat()}, refreshing")
            grant = await self._oauth.refresh(stored.refresh_token)
            refreshed = await self._store_grant(grant, scopes=stored.scopes)
            return refreshed.access_token

    async def complete_authorization(self, *, code: str, code_verifier: str, redirect_uri: str) -> Credential:
        """Exchange the authorization code and store the first credential"""
        grant = await self._oauth.exchange_code(code=code, code_verifier=code_verifier, redirect_uri=redirect_uri)
        credential = await self._store_grant(grant, scopes=self._oauth.scopes)
        logger.info("Marketplace shop connected")
        return credential

    async def connection_status(self) -> Dict[str, Any]:
        stored = await self._store.get_credential()
        if stored is None:
            return {
                "connected": False,
                "static_token": bool(self.settings.marketplace.access_token),
                "expires_at": None,
                "scopes": None,
            }
        return {
            "connected": True,
            "static_token": False,
            "expires_at": stored.expires_at.isoformat(),
            "scopes": stored.scopes,
        }

    def _static_token(self) -> str:
        token = self.settings.marketplace.access_token
        if token:
            logger.debug("No stored marketplace credential; using static access token")
            return token
        raise NoCredentialError("No marketplace access token available. Connect the shop first.")

    async def _store_grant(self, grant: TokenGrant, *, scopes: str) -> Credential:
        credential = Credential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=self._now() + timedelta(seconds=int(grant.expires_in)),
            scopes=scopes,
        )
        return await self._store.replace_credential(credential)
