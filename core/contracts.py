"""Canonical data contracts for the research → generate → publish pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class RunPhase(str, Enum):
    """Workflow phase executed by a pipeline run."""

    RESEARCH = "research"
    GENERATE = "generate"
    QUALITY_GATE = "quality_gate"
    PUBLISH = "publish"


class RunState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ProductStatus(str, Enum):
    """Catalog item status; transitions live in core.lifecycle."""

    RESEARCHED = "researched"
    ANALYZED = "analyzed"
    GENERATING = "generating"
    QUALITY_GATE_PENDING = "quality_gate_pending"
    QUALITY_GATE_PASS = "quality_gate_pass"
    QUALITY_GATE_FAIL = "quality_gate_fail"
    READY_FOR_REVIEW = "ready_for_review"
    APPROVED = "approved"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    PUBLISH_FAILED = "publish_failed"


class PipelineRun(BaseModel):
    """One execution of a workflow phase."""

    id: str = Field(default_factory=_new_id)
    phase: RunPhase
    status: RunState = RunState.RUNNING
    metadata: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _terminal_timestamp(self) -> "PipelineRun":
        if (self.status == RunState.RUNNING) != (self.completed_at is None):
            raise ValueError("completed_at must be set exactly when status is not running")
        return self


class ListingData(BaseModel):
    """A marketplace listing observed during research."""

    listing_id: int
    title: str
    description: str = ""
    price_cents: int = 0
    currency: str = "USD"
    num_favorers: int = 0
    views: int = 0
    tags: List[str] = Field(default_factory=list)
    taxonomy_id: Optional[int] = None
    url: str = ""
    shop_name: str = ""
    review_count: int = 0
    rating: Optional[float] = None
    is_digital: bool = True
    sales_estimate: Optional[str] = None
    listing_quality: Optional[str] = None


class ResearchParams(BaseModel):
    niche: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    seed_urls: List[str] = Field(default_factory=list)

    @field_validator("niche", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


class ResearchResult(BaseModel):
    """Researcher output."""

    items: List[ListingData] = Field(default_factory=list)
    categories_analyzed: List[str] = Field(default_factory=list)
    top_seller_patterns: Optional[str] = None


class ResearchRaw(BaseModel):
    """Raw finding persisted for a research run."""

    id: str = Field(default_factory=_new_id)
    run_id: str
    source: str = "web_search"
    category: str
    product_data: ListingData
    created_at: datetime = Field(default_factory=_utcnow)


class Opportunity(BaseModel):
    id: str = Field(default_factory=_new_id)
    niche: str
    product_type: str
    description: str = ""
    demand_score: float = 0.0
    competition_score: float = 0.0
    gap_score: float = 0.0
    feasibility_score: float = 0.0
    composite_score: float = 0.0
    rationale: str = ""
    competitor_prices: List[float] = Field(default_factory=list)
    suggested_price_cents: int = 0
    built: bool = False


class AnalysisResult(BaseModel):
    """Opportunity analyzer output."""

    opportunities: List[Opportunity] = Field(default_factory=list)
    summary: str = ""


class ResearchReport(BaseModel):
    id: str = Field(default_factory=_new_id)
    run_id: str
    opportunities: List[Opportunity] = Field(default_factory=list)
    summary: str = ""
    status: str = "active"
    created_at: datetime = Field(default_factory=_utcnow)


class GeneratedProduct(BaseModel):
    """Structured artifact returned by the generator."""

    product_type: str
    title: str
    description: str
    content: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    price_cents: int = 0
    currency: str = "USD"
    thumbnail_prompt: str = ""
    preview_prompts: List[str] = Field(default_factory=list)
    taxonomy_id: Optional[int] = None


class QAResult(BaseModel):
    """Quality gate verdict with per-dimension scores."""

    passed: bool
    scores: Dict[str, float] = Field(default_factory=dict)
    feedback: str = ""
    attempt: int = 1


class Lesson(BaseModel):
    id: str = Field(default_factory=_new_id)
    product_id: Optional[str] = None
    phase: str = "generation"
    lesson: str
    dimension: Optional[str] = None
    severity: int = 1
    source_feedback: Optional[str] = None
    status: str = "active"
    created_at: datetime = Field(default_factory=_utcnow)


class Product(BaseModel):
    """Catalog item moving through the workflow (the Entity)."""

    id: str = Field(default_factory=_new_id)
    opportunity_id: Optional[str] = None
    report_id: Optional[str] = None
    product_type: str = ""
    title: str = ""
    description: str = ""
    content: Dict[str, Any] = Field(default_factory=dict)
    content_file_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    image_urls: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    price_cents: Optional[int] = None
    currency: str = "USD"
    thumbnail_prompt: str = ""
    preview_prompts: List[str] = Field(default_factory=list)
    taxonomy_id: Optional[int] = None
    qa_score: Optional[QAResult] = None
    qa_attempts: int = 0
    draft_listing_id: Optional[int] = None
    # images already attached to the current draft
    draft_image_urls: List[str] = Field(default_factory=list)
    listing_id: Optional[int] = None
    listing_url: Optional[str] = None
    status: ProductStatus
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _listing_identifiers(self) -> "Product":
        published = self.status == ProductStatus.PUBLISHED
        has_ids = self.listing_id is not None and bool(self.listing_url)
        if published and not has_ids:
            raise ValueError("published product requires listing_id and listing_url")
        if not published and (self.listing_id is not None or self.listing_url):
            raise ValueError("listing identifiers are only set on published products")
        return self

    def to_artifact(self) -> GeneratedProduct:
        """Rebuild the generator-shaped artifact from stored fields."""
        return GeneratedProduct(
            product_type=self.product_type,
            title=self.title,
            description=self.description,
            content=dict(self.content),
            tags=list(self.tags),
            price_cents=int(self.price_cents or 0),
            currency=self.currency,
            thumbnail_prompt=self.thumbnail_prompt,
            preview_prompts=list(self.preview_prompts),
            taxonomy_id=self.taxonomy_id,
        )


class Credential(BaseModel):
    """OAuth access/refresh pair for the marketplace."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: str = ""
    updated_at: datetime = Field(default_factory=_utcnow)


class SaleRecord(BaseModel):
    """A reconciled marketplace transaction line."""

    id: str = Field(default_factory=_new_id)
    entity_id: str
    external_receipt_id: str
    line_item_id: Optional[str] = None
    amount_cents: int
    currency: str
    buyer_reference: str = ""
    transaction_timestamp: datetime
    created_at: datetime = Field(default_factory=_utcnow)


class ReconcileResult(BaseModel):
    inserted: int = 0
    skipped: int = 0
    errors: int = 0


class PublishResult(BaseModel):
    listing_id: int
    url: str
