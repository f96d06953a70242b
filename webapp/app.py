"""FastAPI front end for pipeline actions, sales sync and the shop connect flow."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from fastapi import Body, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field, field_validator

from core import ResearchParams
from marketplace import generate_code_challenge, generate_code_verifier, generate_state
from orchestrator import run_periodically
from utils import configure_app_logging
from utils.exceptions import (
    CredentialError,
    FactoryError,
    InvalidTransitionError,
    MissingFieldsError,
    NotFoundError,
    StaleEntityError,
)
from webapp.runtime import get_runtime


logger = logging.getLogger(__name__)


def _http_error(exc: FactoryError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=exc.message)
    if isinstance(exc, (MissingFieldsError, InvalidTransitionError)):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, StaleEntityError):
        return HTTPException(status_code=409, detail=exc.message)
    return HTTPException(status_code=500, detail=exc.message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = get_runtime()
    log_settings = runtime.settings.logging
    configure_app_logging(
        level=getattr(logging, log_settings.level.upper(), logging.INFO),
        log_file=log_settings.file,
        use_rich=log_settings.use_rich,
    )
    orchestrator = runtime.orchestrator
    pipeline = runtime.settings.pipeline

    try:
        await orchestrator.sweep_stale_runs()
    except Exception as exc:
        logger.error(f"Startup stale run sweep failed: {exc}")

    runtime.tasks.spawn(
        "stale-run-sweep",
        run_periodically(
            "stale run sweep",
            orchestrator.sweep_stale_runs,
            pipeline.stale_sweep_interval,
            initial_delay=pipeline.stale_sweep_interval,
        ),
    )
    if runtime.settings.marketplace.shop_id:
        runtime.tasks.spawn(
            "sales-sync",
            run_periodically(
                "sales sync",
                orchestrator.reconcile_sales,
                pipeline.sales_sync_interval,
                initial_delay=pipeline.initial_sync_delay,
            ),
        )
    else:
        logger.info("ETSY_SHOP_ID not set; scheduled sales sync disabled")

    yield

    await runtime.aclose()


app = FastAPI(title="Listing Factory API", lifespan=lifespan)


class ResearchAction(BaseModel):
    action: Literal["research"]
    niche: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)


class GenerateAction(BaseModel):
    action: Literal["generate"]
    opportunity_id: str
    report_id: str

    @field_validator("opportunity_id", "report_id")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text


class PublishAction(BaseModel):
    action: Literal["publish"]
    product_id: str

    @field_validator("product_id")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text


PipelineAction = Annotated[Union[ResearchAction, GenerateAction, PublishAction], Field(discriminator="action")]


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.get("/api/pipeline/runs")
async def list_runs(limit: int = Query(default=20, ge=1, le=200)) -> Dict[str, Any]:
    runs = await get_runtime().store.list_runs(limit=limit)
    return {"runs": [item.model_dump(mode="json") for item in runs]}


@app.get("/api/pipeline/runs/{run_id}")
async def get_run(run_id: str) -> Dict[str, Any]:
    run = await get_runtime().store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="run not found")
    return run.model_dump(mode="json")


@app.delete("/api/pipeline/runs/{run_id}")
async def delete_run(run_id: str) -> Dict[str, Any]:
    deleted = await get_runtime().store.delete_run(run_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="run not found")
    return {"run_id": run_id, "deleted": True}


@app.post("/api/pipeline", status_code=201)
async def pipeline_action(response: Response, payload: PipelineAction = Body(...)) -> Dict[str, Any]:
    orchestrator = get_runtime().orchestrator
    try:
        if isinstance(payload, ResearchAction):
            params = ResearchParams(niche=payload.niche, keywords=payload.keywords)
            return await orchestrator.start_research(params)

        if isinstance(payload, GenerateAction):
            opportunity = await orchestrator.find_opportunity(payload.report_id, payload.opportunity_id)
            started = await orchestrator.start_generation(payload.opportunity_id, payload.report_id, opportunity)
            response.status_code = 202
            return started

        return await orchestrator.start_publish(payload.product_id)
    except FactoryError as exc:
        raise _http_error(exc) from exc


@app.post("/api/sync-sales")
async def sync_sales() -> Dict[str, Any]:
    try:
        result = await get_runtime().orchestrator.reconcile_sales()
    except FactoryError as exc:
        raise _http_error(exc) from exc
    return result.model_dump()


@app.get("/api/marketplace/auth/start")
def marketplace_auth_start(request: Request) -> RedirectResponse:
    runtime = get_runtime()
    if not runtime.settings.marketplace.api_key:
        raise HTTPException(status_code=500, detail="ETSY_API_KEY is not configured")

    state = generate_state()
    verifier = generate_code_verifier()
    runtime.pending_auth[state] = verifier
    url = runtime.oauth.build_authorization_url(
        state=state,
        code_challenge=generate_code_challenge(verifier),
        redirect_uri=str(request.url_for("marketplace_auth_callback")),
    )
    return RedirectResponse(url, status_code=307)


@app.get("/api/marketplace/auth/callback")
async def marketplace_auth_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: Optional[str] = None,
) -> Dict[str, Any]:
    if error:
        raise HTTPException(status_code=400, detail=f"authorization denied: {error}")
    runtime = get_runtime()
    verifier = runtime.pending_auth.pop(state, None)
    if not code or verifier is None:
        raise HTTPException(status_code=400, detail="invalid or expired authorization state")

    try:
        credential = await runtime.credentials.complete_authorization(
            code=code,
            code_verifier=verifier,
            redirect_uri=str(request.url_for("marketplace_auth_callback")),
        )
    except CredentialError as exc:
        raise _http_error(exc) from exc
    return {"connected": True, "expires_at": credential.expires_at.isoformat(), "scopes": credential.scopes}


@app.get("/api/marketplace/auth/status")
async def marketplace_auth_status() -> Dict[str, Any]:
    return await get_runtime().credentials.connection_status()
