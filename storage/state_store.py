"""
State Store
Persistence boundary for runs, products, research, sales and credentials
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

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
)


class BaseStateStore(ABC):
    """
    Abstract CRUD interface the orchestrator, publisher and reconciler call through.

    Every method is a suspension point. Implementations own the records;
    callers only see copies.
    """

    # --- Runs ---

    @abstractmethod
    async def create_run(self, run: PipelineRun) -> PipelineRun:
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[PipelineRun]:
        pass

    @abstractmethod
    async def list_runs(self, limit: int = 20) -> List[PipelineRun]:
        """Most recently started first"""
        pass

    @abstractmethod
    async def merge_run_metadata(self, run_id: str, patch: Dict[str, Any]) -> PipelineRun:
        """
        Shallow-merge ``patch`` into the run metadata.

        Keys absent from ``patch`` are kept; the metadata map is never replaced.
        """
        pass

    @abstractmethod
    async def finish_run(
        self,
        run_id: str,
        status: RunState,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineRun:
        """Set a terminal status, stamp completed_at and merge ``metadata``"""
        pass

    @abstractmethod
    async def delete_run(self, run_id: str) -> bool:
        pass

    @abstractmethod
    async def mark_stale_runs_failed(self, started_before: datetime) -> int:
        """Fail running runs started before the cutoff; returns how many changed"""
        pass

    # --- Research ---

    @abstractmethod
    async def insert_research_raw(self, rows: Iterable[ResearchRaw]) -> List[ResearchRaw]:
        pass

    @abstractmethod
    async def list_research_raw(self, run_id: str) -> List[ResearchRaw]:
        pass

    @abstractmethod
    async def insert_report(self, report: ResearchReport) -> ResearchReport:
        pass

    @abstractmethod
    async def get_report(self, report_id: str) -> Optional[ResearchReport]:
        pass

    @abstractmethod
    async def list_reports(self, status: Optional[str] = None) -> List[ResearchReport]:
        pass

    # --- Products ---

    @abstractmethod
    async def insert_product(self, product: Product) -> Product:
        """Reject statuses that are not valid initial statuses"""
        pass

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_product_by_listing_id(self, listing_id: int) -> Optional[Product]:
        pass

    @abstractmethod
    async def list_products(self, status: Optional[ProductStatus] = None) -> List[Product]:
        pass

    @abstractmethod
    async def update_product(
        self,
        product_id: str,
        patch: Dict[str, Any],
        *,
        expected_status: Optional[Iterable[ProductStatus]] = None,
    ) -> Product:
        """
        Apply ``patch`` to a product.

        Args:
            product_id: product to change
            patch: field -> new value
            expected_status: when given, the current status must be one of these
                or StaleEntityError is raised (compare-and-set)

        Raises:
            NotFoundError, StaleEntityError, InvalidTransitionError
        """
        pass

    # --- Sales ---

    @abstractmethod
    async def sale_exists(self, external_receipt_id: str) -> bool:
        pass

    @abstractmethod
    async def latest_sale_timestamp(self) -> Optional[datetime]:
        pass

    @abstractmethod
    async def insert_sale(self, sale: SaleRecord) -> SaleRecord:
        """Raise DuplicateRecordError when the (receipt, line item) pair is already stored"""
        pass

    @abstractmethod
    async def list_sales(self, entity_id: Optional[str] = None) -> List[SaleRecord]:
        pass

    # --- Credentials ---

    @abstractmethod
    async def get_credential(self) -> Optional[Credential]:
        pass

    @abstractmethod
    async def replace_credential(self, credential: Credential) -> Credential:
        """Discard the stored pair and store ``credential`` in one step"""
        pass

    # --- Lessons ---

    @abstractmethod
    async def insert_lesson(self, lesson: Lesson) -> Lesson:
        pass
