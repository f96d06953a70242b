"""Workflow orchestrator: research, generation, quality gate and publish phases."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from config import Settings, get_settings
from core import (
    BaseBlobStore,
    BaseGenerator,
    BaseImageRenderer,
    BaseLessonExtractor,
    BaseOpportunityAnalyzer,
    BaseQualityGate,
    BaseResearcher,
    BaseSerializer,
    PUBLISHABLE_STATUSES,
    Opportunity,
    PipelineRun,
    Product,
    ProductStatus,
    QAResult,
    ReconcileResult,
    ResearchParams,
    ResearchRaw,
    ResearchReport,
    RunPhase,
    RunState,
    check_transition,
)
from marketplace import PublishCoordinator, SalesReconciler, ensure_publishable
from storage import BaseStateStore
from utils.exceptions import ConfigurationError, InvalidTransitionError, NotFoundError

from .progress import ProgressReporter
from .tasks import BackgroundTaskRegistry


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def error_message(exc: BaseException) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


class PipelineOrchestrator:
    """
    Drives a product through the workflow and records every phase as a run.

    Phase methods (``execute_*``) create a run, call the collaborators,
    persist results and finish the run. On any failure the run is marked
    failed with the error merged into its metadata and the exception is
    re-raised to the caller.
    """

    def __init__(
        self,
        store: BaseStateStore,
        *,
        researcher: Optional[BaseResearcher] = None,
        analyzer: Optional[BaseOpportunityAnalyzer] = None,
        generator: Optional[BaseGenerator] = None,
        quality_gate: Optional[BaseQualityGate] = None,
        serializer: Optional[BaseSerializer] = None,
        blob_store: Optional[BaseBlobStore] = None,
        image_renderer: Optional[BaseImageRenderer] = None,
        lesson_extractor: Optional[BaseLessonExtractor] = None,
        publisher: Optional[PublishCoordinator] = None,
        reconciler: Optional[SalesReconciler] = None,
        tasks: Optional[BackgroundTaskRegistry] = None,
        settings: Optional[Settings] = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.researcher = researcher
        self.analyzer = analyzer
        self.generator = generator
        self.quality_gate = quality_gate
        self.serializer = serializer
        self.blob_store = blob_store
        self.image_renderer = image_renderer
        self.lesson_extractor = lesson_extractor
        self.publisher = publisher
        self.reconciler = reconciler
        self.tasks = tasks or BackgroundTaskRegistry()
        self._now = now

    # --- Entry points ---

    async def start_research(self, params: ResearchParams) -> Dict[str, str]:
        return await self.execute_research(params)

    async def start_generation(
        self,
        opportunity_id: str,
        report_id: str,
        opportunity: Opportunity,
    ) -> Dict[str, str]:
        """Create the generate run and continue in the background."""
        self._require_generation_collaborators()
        run = await self.store.create_run(
            PipelineRun(
                phase=RunPhase.GENERATE,
                metadata={"opportunity_id": opportunity_id, "report_id": report_id},
            )
        )
        self.tasks.spawn(
            f"generate:{run.id}",
            self._run_generation(run, opportunity_id, report_id, opportunity),
        )
        return {"run_id": run.id, "status": "started"}

    async def find_opportunity(self, report_id: str, opportunity_id: str) -> Opportunity:
        report = await self.store.get_report(report_id)
        if report is None:
            raise NotFoundError(f"Report not found: {report_id}")
        for item in report.opportunities:
            if item.id == opportunity_id:
                return item
        raise NotFoundError(f"Opportunity {opportunity_id} not found in report {report_id}")

    async def start_publish(self, entity_id: str) -> Dict[str, Any]:
        return await self.execute_publish(entity_id)

    async def reconcile_sales(self) -> ReconcileResult:
        reconciler = self._require(self.reconciler, "reconciler")
        return await reconciler.reconcile()

    async def sweep_stale_runs(self) -> int:
        cutoff = self._now() - timedelta(minutes=int(self.settings.pipeline.stale_run_minutes))
        count = await self.store.mark_stale_runs_failed(cutoff)
        if count:
            logger.warning(f"Marked {count} stale run(s) failed (started before {cutoff.isoformat()})")
        return count

    # --- Research ---

    async def execute_research(self, params: ResearchParams) -> Dict[str, str]:
        researcher = self._require(self.researcher, "researcher")
        analyzer = self._require(self.analyzer, "analyzer")

        run = await self.store.create_run(
            PipelineRun(
                phase=RunPhase.RESEARCH,
                metadata={"niche": params.niche, "keywords": list(params.keywords)},
            )
        )
        try:
            research = await researcher.research(params)
            logger.info(
                f"Research found {len(research.items)} listings across "
                f"{len(research.categories_analyzed)} categories"
            )
            await self.store.insert_research_raw(
                ResearchRaw(
                    run_id=run.id,
                    category=item.tags[0] if item.tags else "spreadsheet",
                    product_data=item,
                )
                for item in research.items
            )

            rows = await self.store.list_research_raw(run.id)
            analysis = await analyzer.analyze([row.product_data for row in rows], research.categories_analyzed)

            summary = analysis.summary
            if research.top_seller_patterns:
                summary = f"{summary}\n\n---\n\nTOP SELLER PATTERNS:\n{research.top_seller_patterns}"

            report = await self.store.insert_report(
                ResearchReport(
                    run_id=run.id,
                    opportunities=[
                        item.model_copy(update={"id": uuid4().hex, "built": False})
                        for item in analysis.opportunities
                    ],
                    summary=summary,
                )
            )
        except Exception as exc:
            await self._fail_run(run.id, exc)
            raise

        await self.store.finish_run(
            run.id,
            RunState.COMPLETED,
            {
                "report_id": report.id,
                "products_found": len(research.items),
                "opportunities_identified": len(report.opportunities),
            },
        )
        logger.info(f"Research run {run.id} completed: report {report.id}")
        return {"run_id": run.id, "report_id": report.id}

    # --- Generation ---

    async def execute_generation(
        self,
        opportunity_id: str,
        report_id: str,
        opportunity: Opportunity,
    ) -> Dict[str, str]:
        self._require_generation_collaborators()
        run = await self.store.create_run(
            PipelineRun(
                phase=RunPhase.GENERATE,
                metadata={"opportunity_id": opportunity_id, "report_id": report_id},
            )
        )
        return await self._run_generation(run, opportunity_id, report_id, opportunity)

    async def _run_generation(
        self,
        run: PipelineRun,
        opportunity_id: str,
        report_id: str,
        opportunity: Opportunity,
    ) -> Dict[str, str]:
        reporter = ProgressReporter(self.store, run.id, step=self.settings.pipeline.progress_step)
        product_id: Optional[str] = None
        try:
            report = await self.store.get_report(report_id)
            if report is None:
                raise NotFoundError(f"Report not found: {report_id}")

            logger.info(f"Generating product for opportunity: {opportunity.niche}")
            artifact = await self.generator.generate(opportunity, 1, reporter)
            logger.info(f"Generated \"{artifact.title}\"")

            verdict = await self.quality_gate.evaluate(artifact)
            verdict = verdict.model_copy(update={"attempt": 1})
            logger.info(f"Quality gate {'passed' if verdict.passed else 'failed'}: {verdict.scores}")

            product = await self.store.insert_product(
                Product(
                    opportunity_id=opportunity_id,
                    report_id=report_id,
                    product_type=artifact.product_type,
                    title=artifact.title,
                    description=artifact.description,
                    content=artifact.content,
                    tags=artifact.tags,
                    price_cents=artifact.price_cents,
                    currency=artifact.currency,
                    thumbnail_prompt=artifact.thumbnail_prompt,
                    preview_prompts=artifact.preview_prompts,
                    taxonomy_id=artifact.taxonomy_id,
                    qa_score=verdict,
                    qa_attempts=1,
                    status=ProductStatus.READY_FOR_REVIEW if verdict.passed else ProductStatus.QUALITY_GATE_FAIL,
                )
            )
            product_id = product.id

            await self._extract_lessons(verdict, product)
            product = await self._build_assets(product)
        except Exception as exc:
            await reporter.drain()
            if product_id is not None:
                await self._downgrade(product_id)
            await self._fail_run(run.id, exc)
            raise

        await reporter.drain()
        await self.store.finish_run(
            run.id,
            RunState.COMPLETED,
            {
                "entity_id": product.id,
                "progress": 100,
                "qa_passed": verdict.passed,
                "qa_scores": dict(verdict.scores),
            },
        )
        logger.info(f"Generate run {run.id} completed: product {product.id} is {product.status.value}")
        return {"entity_id": product.id, "run_id": run.id}

    async def _extract_lessons(self, verdict: QAResult, product: Product) -> None:
        if self.lesson_extractor is None:
            return
        try:
            lessons = await self.lesson_extractor.extract(verdict, product)
            for lesson in lessons:
                await self.store.insert_lesson(
                    lesson.model_copy(update={"product_id": product.id, "source_feedback": verdict.feedback})
                )
            logger.info(f"Stored {len(lessons)} lessons for product {product.id}")
        except Exception as exc:
            logger.error(f"Lesson extraction failed, continuing: {exc}")

    async def _build_assets(self, product: Product) -> Product:
        serializer = self.serializer
        data = await serializer.serialize(product.to_artifact())
        file_url = await self.blob_store.upload(
            f"products/{product.id}/template.{serializer.extension}",
            data,
            serializer.content_type,
        )
        patch: Dict[str, Any] = {"content_file_url": file_url}
        logger.info(f"Content file uploaded: {file_url}")

        if self.image_renderer is not None and product.thumbnail_prompt:
            prompts = [product.thumbnail_prompt, *product.preview_prompts]
            prompts = prompts[: self.settings.pipeline.max_listing_images]
            images = await self.image_renderer.render(prompts)
            urls = []
            for index, image in enumerate(images, start=1):
                urls.append(await self.blob_store.upload(f"products/{product.id}/image-{index}.png", image, "image/png"))
            patch["image_urls"] = urls
            patch["thumbnail_url"] = urls[0] if urls else None
            logger.info(f"{len(urls)} listing images saved")

        return await self.store.update_product(product.id, patch)

    async def _release_publish(self, entity_id: str) -> None:
        try:
            await self.store.update_product(entity_id, {"status": ProductStatus.PUBLISH_FAILED})
        except Exception as exc:
            logger.error(f"Could not release product {entity_id} from publishing: {exc}")

    async def _downgrade(self, product_id: str) -> None:
        try:
            await self.store.update_product(product_id, {"status": ProductStatus.QUALITY_GATE_FAIL})
        except Exception as exc:
            logger.error(f"Could not mark product {product_id} quality_gate_fail: {exc}")

    # --- Quality gate ---

    async def execute_quality_gate(self, entity_id: str) -> Dict[str, Any]:
        """Re-evaluate a stored product and move it to review or failure."""
        gate = self._require(self.quality_gate, "quality_gate")
        product = await self._get_product(entity_id)
        check_transition(product.status, ProductStatus.QUALITY_GATE_PENDING)

        run = await self.store.create_run(PipelineRun(phase=RunPhase.QUALITY_GATE, metadata={"entity_id": entity_id}))
        try:
            await self.store.update_product(entity_id, {"status": ProductStatus.QUALITY_GATE_PENDING})
            attempts = product.qa_attempts + 1
            verdict = await gate.evaluate(product.to_artifact())
            verdict = verdict.model_copy(update={"attempt": attempts})

            result = {"qa_score": verdict, "qa_attempts": attempts}
            if verdict.passed:
                await self.store.update_product(entity_id, {"status": ProductStatus.QUALITY_GATE_PASS})
                product = await self.store.update_product(
                    entity_id, {**result, "status": ProductStatus.READY_FOR_REVIEW}
                )
            else:
                product = await self.store.update_product(
                    entity_id, {**result, "status": ProductStatus.QUALITY_GATE_FAIL}
                )
        except Exception as exc:
            await self._fail_run(run.id, exc)
            raise

        await self.store.finish_run(
            run.id,
            RunState.COMPLETED,
            {"qa_passed": verdict.passed, "qa_scores": dict(verdict.scores), "qa_attempts": attempts},
        )
        return {"entity_id": entity_id, "run_id": run.id, "status": product.status.value}

    async def approve(self, entity_id: str) -> Product:
        product = await self._get_product(entity_id)
        if product.status not in (ProductStatus.READY_FOR_REVIEW, ProductStatus.APPROVED):
            raise InvalidTransitionError(
                f"Only products ready for review can be approved (product {entity_id} is {product.status.value})"
            )
        return await self.store.update_product(
            entity_id,
            {"status": ProductStatus.APPROVED},
            expected_status=[ProductStatus.READY_FOR_REVIEW, ProductStatus.APPROVED],
        )

    # --- Publish ---

    async def execute_publish(self, entity_id: str) -> Dict[str, Any]:
        publisher = self._require(self.publisher, "publisher")
        product = await self._get_product(entity_id)
        ensure_publishable(product)
        if product.status not in PUBLISHABLE_STATUSES:
            raise InvalidTransitionError(
                f"Product {entity_id} cannot be published from {product.status.value}",
                {"status": product.status.value},
            )

        # Compare-and-set: a concurrent trigger that got here first wins.
        product = await self.store.update_product(
            entity_id,
            {"status": ProductStatus.PUBLISHING},
            expected_status=PUBLISHABLE_STATUSES,
        )
        try:
            run = await self.store.create_run(PipelineRun(phase=RunPhase.PUBLISH, metadata={"entity_id": entity_id}))
        except Exception:
            await self._release_publish(entity_id)
            raise

        async def on_step(number: int, name: str, detail: Dict[str, Any]) -> None:
            await self.store.merge_run_metadata(run.id, {f"step_{number}": {"name": name, **detail}})

        try:
            result = await publisher.publish(product, on_step=on_step)
        except Exception as exc:
            await self._fail_run(run.id, exc)
            raise

        await self.store.finish_run(run.id, RunState.COMPLETED, {"listing_id": result.listing_id, "url": result.url})
        logger.info(f"Publish run {run.id} completed: {result.url}")
        return {"entity_id": entity_id, "run_id": run.id, "listing_id": result.listing_id, "url": result.url}

    # --- Helpers ---

    def _require(self, collaborator, name: str):
        if collaborator is None:
            raise ConfigurationError(f"No {name} configured")
        return collaborator

    def _require_generation_collaborators(self) -> None:
        self._require(self.generator, "generator")
        self._require(self.quality_gate, "quality_gate")
        self._require(self.serializer, "serializer")
        self._require(self.blob_store, "blob_store")

    async def _get_product(self, entity_id: str) -> Product:
        product = await self.store.get_product(entity_id)
        if product is None:
            raise NotFoundError(f"Product not found: {entity_id}")
        return product

    async def _fail_run(self, run_id: str, exc: BaseException) -> None:
        logger.error(f"Run {run_id} failed: {error_message(exc)}")
        try:
            await self.store.finish_run(run_id, RunState.FAILED, {"error": error_message(exc)})
        except Exception as store_exc:
            logger.error(f"Could not mark run {run_id} failed: {store_exc}")
