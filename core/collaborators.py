"""Capability interfaces for the opaque collaborators the pipeline drives.

Each collaborator exposes a single async method with structured input and
output. Implementations raise ``CollaboratorError`` (or any exception) on
failure; the orchestrator records the failure on the run and re-raises.
"""

from __future__ import annotations

from typing import Callable, List, Sequence

from .contracts import (
    AnalysisResult,
    GeneratedProduct,
    Lesson,
    ListingData,
    Opportunity,
    Product,
    QAResult,
    ResearchParams,
    ResearchResult,
)


ProgressCallback = Callable[[float], None]


class BaseResearcher:
    """Market research collaborator."""

    name = "researcher"

    async def research(self, params: ResearchParams) -> ResearchResult:
        raise NotImplementedError


class BaseOpportunityAnalyzer:
    name = "analyzer"

    async def analyze(self, items: Sequence[ListingData], categories: Sequence[str]) -> AnalysisResult:
        raise NotImplementedError


class BaseGenerator:
    """Produces the structured artifact; reports progress in percent (0-100)."""

    name = "generator"

    async def generate(self, opportunity: Opportunity, attempt: int, on_progress: ProgressCallback) -> GeneratedProduct:
        raise NotImplementedError


class BaseQualityGate:
    name = "quality_gate"

    async def evaluate(self, artifact: GeneratedProduct) -> QAResult:
        raise NotImplementedError


class BaseSerializer:
    """Structured artifact -> binary file."""

    name = "serializer"
    content_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    extension = "xlsx"

    async def serialize(self, artifact: GeneratedProduct) -> bytes:
        raise NotImplementedError


class BaseBlobStore:
    name = "blob_store"

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store ``data`` at ``path`` and return its public URL."""
        raise NotImplementedError


class BaseImageRenderer:
    """Renders listing images (PNG bytes) from prompts."""

    name = "image_renderer"

    async def render(self, prompts: Sequence[str]) -> List[bytes]:
        raise NotImplementedError


class BaseLessonExtractor:
    name = "lesson_extractor"

    async def extract(self, qa_result: QAResult, product: Product) -> List[Lesson]:
        raise NotImplementedError
