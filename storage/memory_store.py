"""In-memory state store for single-process runs and tests."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from core import (
    Credential,
    Lesson,
    PipelineRun,
    Product,
    ProductStatus,
    ResearchRaw,
    ResearchReport,
    RunState,
    SaleRecord,
    check_initial,
    check_transition,
)
from utils.exceptions import DuplicateRecordError, NotFoundError, StaleEntityError, StorageError

from .state_store import BaseStateStore


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStateStore(BaseStateStore):
    """Thread-safe dict-backed store; every read returns a deep copy."""

    def __init__(self) -> None:
        self._runs: Dict[str, PipelineRun] = {}
        self._research_raw: List[ResearchRaw] = []
        self._reports: Dict[str, ResearchReport] = {}
        self._products: Dict[str, Product] = {}
        self._sales: Dict[Tuple[str, Optional[str]], SaleRecord] = {}
        self._credential: Optional[Credential] = None
        self._lessons: List[Lesson] = []
        self._lock = Lock()

    # --- Runs ---

    async def create_run(self, run: PipelineRun) -> PipelineRun:
        with self._lock:
            if run.id in self._runs:
                raise DuplicateRecordError(f"Run already exists: {run.id}")
            self._runs[run.id] = run.model_copy(deep=True)
            return run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Optional[PipelineRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    async def list_runs(self, limit: int = 20) -> List[PipelineRun]:
        with self._lock:
            runs = sorted(self._runs.values(), key=lambda item: item.started_at, reverse=True)
            return [item.model_copy(deep=True) for item in runs[: max(0, int(limit))]]

    async def merge_run_metadata(self, run_id: str, patch: Dict[str, Any]) -> PipelineRun:
        with self._lock:
            run = self._require_run(run_id)
            run.metadata = {**run.metadata, **dict(patch or {})}
            return run.model_copy(deep=True)

    async def finish_run(
        self,
        run_id: str,
        status: RunState,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        if status == RunState.RUNNING:
            raise StorageError("finish_run requires a terminal status", {"run_id": run_id})
        with self._lock:
            run = self._require_run(run_id)
            if run.status != RunState.RUNNING:
                logger.warning(f"Run {run_id} already {run.status.value}; ignoring {status.value}")
                return run.model_copy(deep=True)
            updated = run.model_copy(
                update={
                    "status": status,
                    "completed_at": _utcnow(),
                    "metadata": {**run.metadata, **dict(metadata or {})},
                },
                deep=True,
            )
            self._runs[run_id] = updated
            return updated.model_copy(deep=True)

    async def delete_run(self, run_id: str) -> bool:
        with self._lock:
            return self._runs.pop(run_id, None) is not None

    async def mark_stale_runs_failed(self, started_before: datetime) -> int:
        now = _utcnow()
        changed = 0
        with self._lock:
            for run_id, run in list(self._runs.items()):
                if run.status != RunState.RUNNING or run.started_at >= started_before:
                    continue
                self._runs[run_id] = run.model_copy(
                    update={
                        "status": RunState.FAILED,
                        "completed_at": now,
                        "metadata": {**run.metadata, "error": "Marked failed: no progress before stale cutoff"},
                    },
                    deep=True,
                )
                changed += 1
        return changed

    # --- Research ---

    async def insert_research_raw(self, rows: Iterable[ResearchRaw]) -> List[ResearchRaw]:
        stored = [row.model_copy(deep=True) for row in rows]
        with self._lock:
            self._research_raw.extend(stored)
        return [row.model_copy(deep=True) for row in stored]

    async def list_research_raw(self, run_id: str) -> List[ResearchRaw]:
        with self._lock:
            rows = [row for row in self._research_raw if row.run_id == run_id]
            rows.sort(key=lambda item: item.created_at)
            return [row.model_copy(deep=True) for row in rows]

    async def insert_report(self, report: ResearchReport) -> ResearchReport:
        with self._lock:
            self._reports[report.id] = report.model_copy(deep=True)
            return report.model_copy(deep=True)

    async def get_report(self, report_id: str) -> Optional[ResearchReport]:
        with self._lock:
            report = self._reports.get(report_id)
            return report.model_copy(deep=True) if report else None

    async def list_reports(self, status: Optional[str] = None) -> List[ResearchReport]:
        with self._lock:
            reports = [item for item in self._reports.values() if status is None or item.status == status]
            reports.sort(key=lambda item: item.created_at, reverse=True)
            return [item.model_copy(deep=True) for item in reports]

    # --- Products ---

    async def insert_product(self, product: Product) -> Product:
        check_initial(product.status)
        with self._lock:
            if product.id in self._products:
                raise DuplicateRecordError(f"Product already exists: {product.id}")
            self._products[product.id] = product.model_copy(deep=True)
            return product.model_copy(deep=True)

    async def get_product(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            return product.model_copy(deep=True) if product else None

    async def get_product_by_listing_id(self, listing_id: int) -> Optional[Product]:
        with self._lock:
            for product in self._products.values():
                if product.listing_id is not None and int(product.listing_id) == int(listing_id):
                    return product.model_copy(deep=True)
            return None

    async def list_products(self, status: Optional[ProductStatus] = None) -> List[Product]:
        with self._lock:
            products = [item for item in self._products.values() if status is None or item.status == status]
            products.sort(key=lambda item: item.created_at, reverse=True)
            return [item.model_copy(deep=True) for item in products]

    async def update_product(
        self,
        product_id: str,
        patch: Dict[str, Any],
        *,
        expected_status: Optional[Iterable[ProductStatus]] = None,
    ) -> Product:
        with self._lock:
            current = self._products.get(product_id)
            if current is None:
                raise NotFoundError(f"Product not found: {product_id}")

            if expected_status is not None:
                expected = {ProductStatus(item) for item in expected_status}
                if current.status not in expected:
                    raise StaleEntityError(
                        f"Product {product_id} is {current.status.value}, expected one of "
                        f"{sorted(item.value for item in expected)}",
                        expected=expected,
                        actual=current.status,
                    )

            changes = dict(patch or {})
            if "status" in changes:
                check_transition(current.status, ProductStatus(changes["status"]))

            data = current.model_dump()
            data.update(changes)
            data["updated_at"] = _utcnow()
            try:
                updated = Product.model_validate(data)
            except ValidationError as exc:
                raise StorageError(f"Invalid product update for {product_id}", {"error": str(exc)}) from exc

            self._products[product_id] = updated
            return updated.model_copy(deep=True)

    # --- Sales ---

    async def sale_exists(self, external_receipt_id: str) -> bool:
        key = str(external_receipt_id)
        with self._lock:
            return any(receipt_id == key for receipt_id, _ in self._sales)

    async def latest_sale_timestamp(self) -> Optional[datetime]:
        with self._lock:
            if not self._sales:
                return None
            return max(item.transaction_timestamp for item in self._sales.values())

    async def insert_sale(self, sale: SaleRecord) -> SaleRecord:
        key = (str(sale.external_receipt_id), sale.line_item_id)
        with self._lock:
            if key in self._sales:
                raise DuplicateRecordError(
                    f"Sale already recorded for receipt {sale.external_receipt_id}",
                    {"line_item_id": sale.line_item_id},
                )
            self._sales[key] = sale.model_copy(deep=True)
            return sale.model_copy(deep=True)

    async def list_sales(self, entity_id: Optional[str] = None) -> List[SaleRecord]:
        with self._lock:
            sales = [item for item in self._sales.values() if entity_id is None or item.entity_id == entity_id]
            sales.sort(key=lambda item: item.transaction_timestamp, reverse=True)
            return [item.model_copy(deep=True) for item in sales]

    # --- Credentials ---

    async def get_credential(self) -> Optional[Credential]:
        with self._lock:
            return self._credential.model_copy(deep=True) if self._credential else None

    async def replace_credential(self, credential: Credential) -> Credential:
        stored = credential.model_copy(update={"updated_at": _utcnow()}, deep=True)
        with self._lock:
            self._credential = stored
        return stored.model_copy(deep=True)

    # --- Lessons ---

    async def insert_lesson(self, lesson: Lesson) -> Lesson:
        with self._lock:
            self._lessons.append(lesson.model_copy(deep=True))
        return lesson.model_copy(deep=True)

    def _require_run(self, run_id: str) -> PipelineRun:
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Run not found: {run_id}")
        return run
