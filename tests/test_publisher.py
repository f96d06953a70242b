from __future__ import annotations

from typing import Any, Dict, List

import pytest

from core import ProductStatus
from marketplace.publisher import PublishCoordinator, ensure_publishable, file_slug, with_ai_disclosure
from utils.exceptions import DownloadError, InvalidTransitionError, MissingFieldsError, PublishStepError, RemoteError

from conftest import build_product


class _FakeApi:
    def __init__(self, *, fail_draft: bool = False, activated_url: str = "https://www.etsy.com/listing/555/budget") -> None:
        self.fail_draft = fail_draft
        self.activated_url = activated_url
        self.drafts: List[Dict[str, Any]] = []
        self.images: List[Dict[str, Any]] = []
        self.files: List[Dict[str, Any]] = []
        self.updates: List[Dict[str, Any]] = []

    async def create_draft_listing(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_draft:
            raise RemoteError("Marketplace API error (400): invalid taxonomy", status=400)
        self.drafts.append(params)
        return {"listing_id": 555, "state": "draft"}

    async def upload_listing_image(self, listing_id: int, image: bytes, rank=None) -> Dict[str, Any]:
        self.images.append({"listing_id": listing_id, "image": image, "rank": rank})
        return {"listing_image_id": len(self.images)}

    async def upload_listing_file(self, listing_id: int, data: bytes, filename: str) -> Dict[str, Any]:
        self.files.append({"listing_id": listing_id, "data": data, "filename": filename})
        return {"listing_file_id": 1}

    async def update_listing(self, listing_id: int, params: Dict[str, Any]) -> Dict[str, Any]:
        self.updates.append({"listing_id": listing_id, **params})
        return {"listing_id": listing_id, "state": "active", "url": self.activated_url}


class _FakeDownloader:
    def __init__(self) -> None:
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        if "broken" in url:
            raise DownloadError(f"Download failed (404): {url}", url=url)
        return f"bytes:{url}".encode()


def _coordinator(store, settings, api=None, downloader=None) -> PublishCoordinator:
    return PublishCoordinator(api or _FakeApi(), store, downloader or _FakeDownloader(), settings)


@pytest.mark.asyncio
async def test_publish_runs_all_steps_and_marks_published(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISHING)
    api = _FakeApi()
    steps = []

    async def on_step(number, name, detail):
        steps.append((number, name))

    result = await _coordinator(store, settings, api).publish(product, on_step=on_step)

    assert result.listing_id == 555
    assert result.url == "https://www.etsy.com/listing/555/budget"
    assert steps == [(1, "create draft"), (2, "upload images"), (3, "upload file"), (4, "activate")]

    draft = api.drafts[0]
    assert draft["price"] == 12.99
    assert draft["quantity"] == 999
    assert draft["taxonomy_id"] == 2078
    assert draft["is_digital"] is True
    assert draft["type"] == "download"
    assert [item["rank"] for item in api.images] == [1, 2, 3]
    assert api.files[0]["filename"] == "budget-planner-2025-monthly-tracker.xlsx"
    assert api.updates == [{"listing_id": 555, "state": "active"}]

    stored = await store.get_product(product.id)
    assert stored.status == ProductStatus.PUBLISHED
    assert stored.listing_id == 555
    assert stored.listing_url == result.url
    assert stored.draft_listing_id is None


@pytest.mark.asyncio
async def test_one_failed_image_is_skipped(store, settings, make_product) -> None:
    product = await make_product(
        ProductStatus.PUBLISHING,
        image_urls=[
            "https://files.example.com/a.png",
            "https://files.example.com/broken.png",
            "https://files.example.com/c.png",
        ],
    )
    api = _FakeApi()

    await _coordinator(store, settings, api).publish(product)

    assert len(api.images) == 2
    assert [item["rank"] for item in api.images] == [1, 3]
    assert (await store.get_product(product.id)).status == ProductStatus.PUBLISHED


@pytest.mark.asyncio
async def test_all_images_failing_fails_step_two(store, settings, make_product) -> None:
    product = await make_product(
        ProductStatus.PUBLISHING,
        image_urls=[f"https://files.example.com/broken-{index}.png" for index in range(3)],
    )
    api = _FakeApi()

    with pytest.raises(PublishStepError) as exc_info:
        await _coordinator(store, settings, api).publish(product)

    assert exc_info.value.step == 2
    assert "Step 2 (upload images) failed" in exc_info.value.message
    assert "All image uploads failed" in exc_info.value.message
    assert api.files == []
    assert (await store.get_product(product.id)).status == ProductStatus.PUBLISH_FAILED


@pytest.mark.asyncio
async def test_product_without_images_skips_image_upload(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISHING, image_urls=[])
    api = _FakeApi()

    await _coordinator(store, settings, api).publish(product)

    assert api.images == []
    assert (await store.get_product(product.id)).status == ProductStatus.PUBLISHED


@pytest.mark.asyncio
async def test_step_one_failure_marks_publish_failed(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISHING)
    api = _FakeApi(fail_draft=True)
    downloader = _FakeDownloader()

    with pytest.raises(PublishStepError) as exc_info:
        await _coordinator(store, settings, api, downloader).publish(product)

    assert exc_info.value.step == 1
    assert exc_info.value.message.startswith("Step 1 (create draft) failed:")
    assert "invalid taxonomy" in exc_info.value.message
    assert downloader.fetched == []
    assert (await store.get_product(product.id)).status == ProductStatus.PUBLISH_FAILED


@pytest.mark.asyncio
async def test_missing_content_file_fails_step_three(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISHING, content_file_url=None)

    with pytest.raises(PublishStepError) as exc_info:
        await _coordinator(store, settings).publish(product)

    assert exc_info.value.step == 3
    stored = await store.get_product(product.id)
    assert stored.status == ProductStatus.PUBLISH_FAILED
    assert stored.draft_listing_id == 555


@pytest.mark.asyncio
async def test_retry_reuses_stored_draft(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISH_FAILED)
    await store.update_product(product.id, {"draft_listing_id": 777})
    product = await store.update_product(product.id, {"status": ProductStatus.PUBLISHING})
    api = _FakeApi(activated_url="")

    result = await _coordinator(store, settings, api).publish(product)

    assert api.drafts == []
    assert {item["listing_id"] for item in api.images} == {777}
    assert api.files[0]["listing_id"] == 777
    assert result.listing_id == 777
    assert result.url == "https://www.etsy.com/listing/777"


@pytest.mark.asyncio
async def test_retry_on_the_same_draft_does_not_upload_images_twice(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISHING, content_file_url=None)
    api = _FakeApi()
    coordinator = _coordinator(store, settings, api)

    with pytest.raises(PublishStepError):
        await coordinator.publish(product)

    failed = await store.get_product(product.id)
    assert failed.draft_image_urls == product.image_urls
    assert len(api.images) == 3

    retry = await store.update_product(product.id, {"content_file_url": "https://files.example.com/t.xlsx"})
    await coordinator.publish(retry)

    assert len(api.drafts) == 1
    assert len(api.images) == 3
    published = await store.get_product(product.id)
    assert published.status == ProductStatus.PUBLISHED
    assert published.draft_image_urls == []


@pytest.mark.asyncio
async def test_ready_product_is_claimed_before_any_remote_call(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.READY_FOR_REVIEW)
    api = _FakeApi()
    steps = []

    async def on_step(number, name, detail):
        steps.append((number, (await store.get_product(product.id)).status))

    await _coordinator(store, settings, api).publish(product, on_step=on_step)

    assert steps[0] == (1, ProductStatus.PUBLISHING)
    stored = await store.get_product(product.id)
    assert stored.status == ProductStatus.PUBLISHED
    assert stored.listing_id == 555


@pytest.mark.asyncio
async def test_product_outside_publishable_statuses_is_rejected_without_remote_calls(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.QUALITY_GATE_FAIL)
    api = _FakeApi()
    downloader = _FakeDownloader()

    with pytest.raises(InvalidTransitionError):
        await _coordinator(store, settings, api, downloader).publish(product)

    assert api.drafts == []
    assert api.updates == []
    assert downloader.fetched == []
    assert (await store.get_product(product.id)).status == ProductStatus.QUALITY_GATE_FAIL

@pytest.mark.asyncio
async def test_disclosure_is_added_once_across_publishes(store, settings, make_product) -> None:
    product = await make_product(ProductStatus.PUBLISHING, content_file_url=None)
    api = _FakeApi()
    coordinator = _coordinator(store, settings, api)

    with pytest.raises(PublishStepError):
        await coordinator.publish(product)

    # drop the stored draft so the second attempt sends a new draft payload
    await store.update_product(product.id, {"draft_listing_id": None})
    await store.update_product(product.id, {"status": ProductStatus.PUBLISHING})
    retry = await store.update_product(product.id, {"content_file_url": "https://files.example.com/t.xlsx"})
    await coordinator.publish(retry)

    clause = settings.pipeline.ai_disclosure
    assert len(api.drafts) == 2
    for draft in api.drafts:
        assert draft["description"].count(clause) == 1
    assert (await store.get_product(product.id)).description.count(clause) == 1


def test_disclosure_respects_existing_mentions() -> None:
    clause = "Designed with AI assistance."
    assert with_ai_disclosure("Built using AI tools.", clause) == "Built using AI tools."
    assert with_ai_disclosure("Made with AI assistance", clause) == "Made with AI assistance"
    assert with_ai_disclosure("Plain text", clause) == f"Plain text\n\n---\n{clause}"


def test_ensure_publishable_lists_missing_fields() -> None:
    product = build_product(title=" ", price_cents=0, tags=[])

    with pytest.raises(MissingFieldsError) as exc_info:
        ensure_publishable(product)

    assert exc_info.value.fields == ["title", "price", "tags"]


def test_file_slug() -> None:
    assert file_slug("Budget Planner 2025 -- Ultimate!!") == "budget-planner-2025-ultimate"
    assert len(file_slug("word " * 40)) <= 50
    assert file_slug("!!!") == "listing"
