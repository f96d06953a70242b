from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from config import HttpSettings, MarketplaceSettings, PipelineSettings, ReconcileSettings, Settings
from core import Product, ProductStatus
from storage import InMemoryStateStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        marketplace=MarketplaceSettings(api_key="test-key", shop_id="42", access_token=None, refresh_token=None),
        http=HttpSettings(),
        pipeline=PipelineSettings(),
        reconcile=ReconcileSettings(),
    )


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


def build_product(**overrides: Any) -> Product:
    data: Dict[str, Any] = {
        "product_type": "spreadsheet",
        "title": "Budget Planner 2025 - Monthly Tracker",
        "description": "Track every expense with automatic category totals.",
        "content": {"sheets": [{"name": "Budget"}]},
        "content_file_url": "https://files.example.com/products/p1/template.xlsx",
        "image_urls": [
            "https://files.example.com/products/p1/image-1.png",
            "https://files.example.com/products/p1/image-2.png",
            "https://files.example.com/products/p1/image-3.png",
        ],
        "tags": ["budget", "planner", "finance"],
        "price_cents": 1299,
        "status": ProductStatus.READY_FOR_REVIEW,
    }
    data.update(overrides)
    return Product(**data)


@pytest.fixture
def make_product(store: InMemoryStateStore):
    """Insert a product and walk it to ``status`` through legal transitions."""

    paths = {
        ProductStatus.READY_FOR_REVIEW: [],
        ProductStatus.QUALITY_GATE_FAIL: [],
        ProductStatus.APPROVED: [ProductStatus.APPROVED],
        ProductStatus.PUBLISHING: [ProductStatus.PUBLISHING],
        ProductStatus.PUBLISH_FAILED: [ProductStatus.PUBLISHING, ProductStatus.PUBLISH_FAILED],
        ProductStatus.PUBLISHED: [ProductStatus.PUBLISHING, ProductStatus.PUBLISHED],
    }

    async def _make(status: ProductStatus = ProductStatus.READY_FOR_REVIEW, listing_id: Optional[int] = None, **overrides: Any) -> Product:
        initial = ProductStatus.QUALITY_GATE_FAIL if status == ProductStatus.QUALITY_GATE_FAIL else ProductStatus.READY_FOR_REVIEW
        product = await store.insert_product(build_product(status=initial, **overrides))
        for step in paths[status]:
            patch: Dict[str, Any] = {"status": step}
            if step == ProductStatus.PUBLISHED:
                patch["listing_id"] = listing_id or 1001
                patch["listing_url"] = f"https://www.etsy.com/listing/{listing_id or 1001}"
            product = await store.update_product(product.id, patch)
        return product

    return _make
