"""
Marketplace Module
Resilient remote access to the Etsy Open API: client, credentials, publishing and sales sync
"""
from .client import RemoteClient, backoff_delay, is_retryable_status
from .oauth import (
    MarketplaceOAuth,
    TokenGrant,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from .credentials import CredentialManager
from .api import MarketplaceApi, listing_from_payload, money_to_cents
from .assets import AssetDownloader
from .publisher import PublishCoordinator, ensure_publishable, file_slug, with_ai_disclosure
from .reconciler import SalesReconciler

__all__ = [
    "RemoteClient",
    "backoff_delay",
    "is_retryable_status",
    "MarketplaceOAuth",
    "TokenGrant",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    "CredentialManager",
    "MarketplaceApi",
    "listing_from_payload",
    "money_to_cents",
    "AssetDownloader",
    "PublishCoordinator",
    "ensure_publishable",
    "file_slug",
    "with_ai_disclosure",
    "SalesReconciler",
]
