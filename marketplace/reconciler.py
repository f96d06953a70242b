"""
Sales Reconciler
Pulls shop receipts since the watermark and records sales for our listings
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from config import Settings, get_settings
from core import ReconcileResult, SaleRecord
from storage import BaseStateStore

from .api import MarketplaceApi, money_to_cents


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SalesReconciler:
    """
    Idempotent receipt import.

    A receipt already recorded is skipped as a whole, so replaying the
    overlap window (or the same feed twice) inserts nothing new.
    """

    def __init__(
        self,
        api: MarketplaceApi,
        store: BaseStateStore,
        settings: Optional[Settings] = None,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.api = api
        self.store = store
        self._now = now

    async def watermark(self) -> int:
        """Unix seconds passed as ``min_created``"""
        reconcile = self.settings.reconcile
        latest = await self.store.latest_sale_timestamp()
        if latest is not None:
            start = latest - timedelta(seconds=reconcile.overlap_seconds)
        else:
            start = self._now() - timedelta(days=reconcile.lookback_days)
        return int(start.timestamp())

    async def reconcile(self) -> ReconcileResult:
        page_size = int(self.settings.reconcile.page_size)
        min_created = await self.watermark()
        result = ReconcileResult()
        offset = 0

        while True:
            page = await self.api.get_shop_receipts(min_created=min_created, limit=page_size, offset=offset)
            receipts = list(page.get("results") or [])

            for receipt in receipts:
                receipt_id = str(receipt.get("receipt_id"))
                try:
                    if await self.store.sale_exists(receipt_id):
                        result.skipped += 1
                        continue
                    await self._record_receipt(receipt_id, receipt, result)
                except Exception as exc:
                    logger.error(f"Error processing receipt {receipt_id}: {exc}")
                    result.errors += 1

            if len(receipts) < page_size:
                break
            offset += page_size

        logger.info(
            f"Sales sync complete: {result.inserted} inserted, {result.skipped} skipped, {result.errors} errors"
        )
        return result

    async def _record_receipt(self, receipt_id: str, receipt: Dict[str, Any], result: ReconcileResult) -> None:
        """Adds to ``result.inserted`` as each line is stored"""
        currency = str((receipt.get("grandtotal") or {}).get("currency_code") or "USD")
        timestamp = datetime.fromtimestamp(int(receipt["create_timestamp"]), tz=timezone.utc)

        for index, transaction in enumerate(receipt.get("transactions") or []):
            product = await self.store.get_product_by_listing_id(int(transaction["listing_id"]))
            if product is None:
                continue

            # Receipts without transaction ids fall back to the line position.
            line_item_id = transaction.get("transaction_id", index)
            await self.store.insert_sale(
                SaleRecord(
                    entity_id=product.id,
                    external_receipt_id=receipt_id,
                    line_item_id=str(line_item_id),
                    amount_cents=money_to_cents(transaction.get("price")),
                    currency=currency,
                    buyer_reference=str(receipt.get("buyer_email") or ""),
                    transaction_timestamp=timestamp,
                )
            )
            result.inserted += 1
