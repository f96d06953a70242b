"""
Publish Coordinator
Turns a reviewed product into an active marketplace listing in four remote steps
"""
import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import Settings, get_settings
from core import PUBLISHABLE_STATUSES, Product, ProductStatus, PublishResult
from storage import BaseStateStore
from utils.exceptions import InvalidTransitionError, MissingFieldsError, NotFoundError, PublishError, PublishStepError

from .api import MarketplaceApi
from .assets import AssetDownloader


logger = logging.getLogger(__name__)

StepCallback = Callable[[int, str, Dict[str, Any]], Awaitable[None]]

DISCLOSURE_MARKERS = ("AI assistance", "AI tools")

STEP_CREATE_DRAFT = (1, "create draft")
STEP_UPLOAD_IMAGES = (2, "upload images")
STEP_UPLOAD_FILE = (3, "upload file")
STEP_ACTIVATE = (4, "activate")


def ensure_publishable(product: Product) -> None:
    """Raise MissingFieldsError when the product cannot become a listing"""
    missing = []
    if not product.title.strip():
        missing.append("title")
    if not product.description.strip():
        missing.append("description")
    if not product.price_cents or product.price_cents <= 0:
        missing.append("price")
    if not product.tags:
        missing.append("tags")
    if missing:
        raise MissingFieldsError(
            f"Product {product.id} is missing required fields: {', '.join(missing)}",
            fields=missing,
            product_id=product.id,
        )


def with_ai_disclosure(description: str, clause: str) -> str:
    if any(marker in description for marker in DISCLOSURE_MARKERS):
        return description
    return f"{description}\n\n---\n{clause}"


def file_slug(title: str, max_length: int = 50) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:max_length]
    return slug or "listing"


def _error_text(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


class PublishCoordinator:
    """
    Multi-step publish with per-step failure handling.

    The product is claimed into ``publishing`` first. Any step failure marks
    it ``publish_failed`` and raises PublishStepError naming the step. The
    draft listing id and the images attached to it are stored as they land,
    so a retry continues on the same draft without re-uploading images.
    """

    def __init__(
        self,
        api: MarketplaceApi,
        store: BaseStateStore,
        downloader: Optional[AssetDownloader] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api = api
        self.store = store
        self.downloader = downloader or AssetDownloader(self.settings)

    async def publish(self, product: Product, on_step: Optional[StepCallback] = None) -> PublishResult:
        product = await self._claim(product)
        pipeline = self.settings.pipeline
        description = with_ai_disclosure(product.description, pipeline.ai_disclosure)

        async def report(step: tuple, detail: Dict[str, Any]) -> None:
            if on_step is not None:
                await on_step(step[0], step[1], detail)

        # Step 1
        async with self._step(product.id, *STEP_CREATE_DRAFT):
            listing_id = product.draft_listing_id
            if listing_id is not None:
                attached = list(product.draft_image_urls)
                logger.info(f"Reusing draft listing {listing_id} for product {product.id}")
                await report(STEP_CREATE_DRAFT, {"listing_id": listing_id, "reused": True})
            else:
                logger.info(f"Creating draft listing for \"{product.title}\"")
                draft = await self.api.create_draft_listing(self._draft_params(product, description))
                listing_id = int(draft["listing_id"])
                attached = []
                await self.store.update_product(
                    product.id,
                    {"draft_listing_id": listing_id, "draft_image_urls": attached, "description": description},
                )
                logger.info(f"Draft listing created: {listing_id}")
                await report(STEP_CREATE_DRAFT, {"listing_id": listing_id, "reused": False})

        # Step 2
        async with self._step(product.id, *STEP_UPLOAD_IMAGES):
            uploaded = await self._upload_images(product, listing_id, attached)
            await report(
                STEP_UPLOAD_IMAGES,
                {"uploaded": uploaded, "already_attached": len(attached) - uploaded, "total": len(product.image_urls)},
            )

        # Step 3
        async with self._step(product.id, *STEP_UPLOAD_FILE):
            filename = await self._upload_file(listing_id, product)
            await report(STEP_UPLOAD_FILE, {"filename": filename})

        # Step 4
        async with self._step(product.id, *STEP_ACTIVATE):
            activated = await self.api.update_listing(listing_id, {"state": "active"})
            url = (activated or {}).get("url") or self.settings.marketplace.listing_url_template.format(
                listing_id=listing_id
            )
            await self.store.update_product(
                product.id,
                {
                    "listing_id": listing_id,
                    "listing_url": url,
                    "status": ProductStatus.PUBLISHED,
                    "draft_listing_id": None,
                    "draft_image_urls": [],
                },
                expected_status=[ProductStatus.PUBLISHING],
            )
            logger.info(f"Listing activated: {url}")
            await report(STEP_ACTIVATE, {"listing_id": listing_id, "url": url})

        return PublishResult(listing_id=listing_id, url=url)

    async def _claim(self, product: Product) -> Product:
        """
        Return the stored product in ``publishing``.

        A product the caller already moved to ``publishing`` is taken as is;
        a ready, approved or failed one is moved there with a compare-and-set.
        """
        stored = await self.store.get_product(product.id)
        if stored is None:
            raise NotFoundError(f"Product not found: {product.id}")
        ensure_publishable(stored)
        if stored.status == ProductStatus.PUBLISHING:
            return stored
        if stored.status not in PUBLISHABLE_STATUSES:
            raise InvalidTransitionError(
                f"Product {stored.id} cannot be published from {stored.status.value}",
                {"status": stored.status.value},
            )
        return await self.store.update_product(
            stored.id,
            {"status": ProductStatus.PUBLISHING},
            expected_status=PUBLISHABLE_STATUSES,
        )

    def _draft_params(self, product: Product, description: str) -> Dict[str, Any]:
        pipeline = self.settings.pipeline
        return {
            "title": product.title,
            "description": description,
            "price": round(int(product.price_cents or 0) / 100, 2),
            "quantity": pipeline.listing_quantity,
            "taxonomy_id": product.taxonomy_id or pipeline.default_taxonomy_id,
            "tags": list(product.tags[: pipeline.max_tags]),
            "who_made": "i_did",
            "when_made": "made_to_order",
            "is_digital": True,
            "type": "download",
            "is_supply": False,
        }

    async def _upload_images(self, product: Product, listing_id: int, attached: List[str]) -> int:
        """Upload images not yet on the draft; ``attached`` is extended in place"""
        pending = [
            (rank, url) for rank, url in enumerate(product.image_urls, start=1) if url not in attached
        ]
        if not pending:
            return 0
        logger.info(f"Uploading {len(pending)} listing images")
        results = await asyncio.gather(*(self._upload_image(listing_id, url, rank) for rank, url in pending))
        new_urls = [url for (rank, url), ok in zip(pending, results) if ok]
        if new_urls:
            attached.extend(new_urls)
            await self.store.update_product(product.id, {"draft_image_urls": list(attached)})
        if not attached:
            raise PublishError("All image uploads failed; the marketplace requires at least 1 listing image")
        return len(new_urls)

    async def _upload_image(self, listing_id: int, url: str, rank: int) -> bool:
        try:
            image = await self.downloader.fetch(url)
            await self.api.upload_listing_image(listing_id, image, rank=rank)
        except Exception as exc:
            logger.error(f"Image {rank} skipped: {_error_text(exc)}")
            return False
        logger.info(f"Image {rank} uploaded")
        return True

    async def _upload_file(self, listing_id: int, product: Product) -> str:
        if not product.content_file_url:
            raise PublishError(f"No content file URL on product {product.id}")
        data = await self.downloader.fetch(product.content_file_url)
        filename = f"{file_slug(product.title)}.xlsx"
        await self.api.upload_listing_file(listing_id, data, filename)
        logger.info(f"Content file uploaded as {filename}")
        return filename

    @asynccontextmanager
    async def _step(self, product_id: str, number: int, name: str):
        logger.info(f"Step {number}: {name}")
        try:
            yield
        except Exception as exc:
            await self._mark_failed(product_id)
            raise PublishStepError(
                f"Step {number} ({name}) failed: {_error_text(exc)}",
                step=number,
                step_name=name,
                product_id=product_id,
            ) from exc

    async def _mark_failed(self, product_id: str) -> None:
        try:
            await self.store.update_product(product_id, {"status": ProductStatus.PUBLISH_FAILED})
        except Exception as exc:
            logger.error(f"Could not mark product {product_id} publish_failed: {exc}")
