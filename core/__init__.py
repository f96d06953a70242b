"""Core contracts, status lifecycle and collaborator interfaces."""

from .collaborators import (
    BaseBlobStore,
    BaseGenerator,
    BaseImageRenderer,
    BaseLessonExtractor,
    BaseOpportunityAnalyzer,
    BaseQualityGate,
    BaseResearcher,
    BaseSerializer,
    ProgressCallback,
)
from .contracts import (
    AnalysisResult,
    Credential,
    GeneratedProduct,
    Lesson,
    ListingData,
    Opportunity,
    PipelineRun,
    Product,
    ProductStatus,
    PublishResult,
    QAResult,
    ReconcileResult,
    ResearchParams,
    ResearchRaw,
    ResearchReport,
    ResearchResult,
    RunPhase,
    RunState,
    SaleRecord,
)
from .lifecycle import PUBLISHABLE_STATUSES, can_transition, check_initial, check_transition

__all__ = [
    "AnalysisResult",
    "BaseBlobStore",
    "BaseGenerator",
    "BaseImageRenderer",
    "BaseLessonExtractor",
    "BaseOpportunityAnalyzer",
    "BaseQualityGate",
    "BaseResearcher",
    "BaseSerializer",
    "Credential",
    "GeneratedProduct",
    "Lesson",
    "ListingData",
    "Opportunity",
    "PUBLISHABLE_STATUSES",
    "PipelineRun",
    "Product",
    "ProductStatus",
    "ProgressCallback",
    "PublishResult",
    "QAResult",
    "ReconcileResult",
    "ResearchParams",
    "ResearchRaw",
    "ResearchReport",
    "ResearchResult",
    "RunPhase",
    "RunState",
    "SaleRecord",
    "can_transition",
    "check_initial",
    "check_transition",
]
