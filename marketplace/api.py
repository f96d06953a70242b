"""
Marketplace API
Typed wrappers over the Etsy Open API v3 endpoints the pipeline uses
"""
import logging
from typing import Any, Dict, List, Optional

from config import Settings, get_settings
from core import ListingData
from utils.exceptions import ConfigurationError

from .client import RemoteClient


logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def money_to_cents(price: Optional[Dict[str, Any]]) -> int:
    """``{"amount": 1299, "divisor": 100}`` -> 1299"""
    if not price:
        return 0
    amount = float(price.get("amount") or 0)
    divisor = float(price.get("divisor") or 100)
    return int(round(amount / (divisor / 100)))


def listing_from_payload(payload: Dict[str, Any]) -> ListingData:
    price = payload.get("price") or {}
    return ListingData(
        listing_id=int(payload["listing_id"]),
        title=str(payload.get("title") or ""),
        description=str(payload.get("description") or ""),
        price_cents=money_to_cents(price),
        currency=str(price.get("currency_code") or "USD"),
        num_favorers=int(payload.get("num_favorers") or 0),
        views=int(payload.get("views") or 0),
        tags=list(payload.get("tags") or []),
        taxonomy_id=payload.get("taxonomy_id"),
        url=str(payload.get("url") or ""),
        review_count=int(payload.get("review_count") or 0),
        rating=payload.get("rating"),
        is_digital=bool(payload.get("is_digital", True)),
    )


class MarketplaceApi:
    """Shop-scoped endpoint calls; every call goes through the RemoteClient"""

    def __init__(self, client: RemoteClient, settings: Optional[Settings] = None) -> None:
        self.client = client
        self.settings = settings or client.settings or get_settings()

    @property
    def shop_id(self) -> str:
        shop_id = str(self.settings.marketplace.shop_id or "").strip()
        if not shop_id:
            raise ConfigurationError("ETSY_SHOP_ID is not configured")
        return shop_id

    # --- Public endpoints ---

    async def search_listings(
        self,
        keywords: str,
        *,
        limit: int = 25,
        offset: int = 0,
        sort_on: str = "score",
    ) -> List[ListingData]:
        payload = await self.client.request(
            "GET",
            "/application/listings/active",
            query={"keywords": keywords, "limit": limit, "offset": offset, "sort_on": sort_on},
            authenticated=False,
        )
        return [listing_from_payload(item) for item in payload.get("results") or []]

    async def get_seller_taxonomy_nodes(self) -> List[Dict[str, Any]]:
        payload = await self.client.request("GET", "/application/seller-taxonomy/nodes", authenticated=False)
        return list(payload.get("results") or [])

    # --- Shop endpoints ---

    async def create_draft_listing(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.client.request("POST", f"/application/shops/{self.shop_id}/listings", body=params)

    async def upload_listing_image(self, listing_id: int, image: bytes, rank: Optional[int] = None) -> Dict[str, Any]:
        body = {"rank": rank} if rank is not None else None
        return await self.client.request(
            "POST",
            f"/application/shops/{self.shop_id}/listings/{listing_id}/images",
            body=body,
            files={"image": ("image.png", image, "image/png")},
        )

    async def upload_listing_file(self, listing_id: int, data: bytes, filename: str) -> Dict[str, Any]:
        return await self.client.request(
            "POST",
            f"/application/shops/{self.shop_id}/listings/{listing_id}/files",
            files={"file": (filename, data, XLSX_CONTENT_TYPE)},
        )

    async def update_listing(self, listing_id: int, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.client.request(
            "PATCH",
            f"/application/shops/{self.shop_id}/listings/{listing_id}",
            body=params,
        )

    async def get_shop_receipts(
        self,
        *,
        min_created: Optional[int] = None,
        max_created: Optional[int] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Dict[str, Any]:
        query = {
            key: value
            for key, value in (
                ("min_created", min_created),
                ("max_created", max_created),
                ("limit", limit),
                ("offset", offset),
            )
            if value is not None
        }
        return await self.client.request(
            "GET",
            f"/application/shops/{self.shop_id}/receipts",
            query=query,
        )
