#!/usr/bin/env python3
"""
Company Analysis API

A FastAPI backend that streams multi-stage company analyses over Server-Sent Events
and serves the stored results.
"""

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from .common import AnalysisRequest
from .config import Settings
from .db import create_engine, create_session_factory, create_tables
from .errors import PersistenceError
from .mcp_tools import MISSING_PROMPT, collect_analysis
from .pipeline import DUAL_STEP, TRI_STEP, AnalysisPipeline, build_pipelines
from .repository import AnalysisRepository
from .sources import group_sources_by_category
from .streaming import SSE_HEADERS, AnalysisStreamSession

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

API_TITLE = "Company Analysis API"
API_VERSION = "3.0.0"


# Pydantic models
class AnalysisRequestBody(BaseModel):
    prompt: Optional[str] = Field(None, description="Name of the company to analyze")
    numberOfEmployees: Optional[str] = Field(None, description="Reported employee count")
    companyGstin: Optional[str] = Field(None, description="Indian GST identification number")
    model: Optional[str] = Field(None, description="Model override, e.g. gpt-4o or claude-sonnet-4-5")

    @field_validator("numberOfEmployees", "companyGstin", mode="before")
    @classmethod
    def numbers_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def to_request(self) -> AnalysisRequest:
        if not self.prompt or not self.prompt.strip():
            raise HTTPException(status_code=400, detail=MISSING_PROMPT)
        return AnalysisRequest(
            company_name=self.prompt,
            number_of_employees=self.numberOfEmployees,
            company_gstin=self.companyGstin,
            model=self.model,
        )


class AnalysisRunBody(AnalysisRequestBody):
    variant: str = Field(TRI_STEP.name, description="tri-step or dual-step")


class AnalysisResponse(BaseModel):
    success: bool
    analysisUuid: Optional[str] = None
    status: Optional[str] = None
    report: Optional[str] = None
    error: Optional[str] = None


def _to_request(body: Optional[AnalysisRequestBody]) -> AnalysisRequest:
    if body is None:
        raise HTTPException(status_code=400, detail=MISSING_PROMPT)
    return body.to_request()


# Dependencies
def get_pipelines(request: Request) -> Dict[str, AnalysisPipeline]:
    return request.app.state.pipelines


def get_store(request: Request) -> AnalysisRepository:
    return request.app.state.store


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"success": False, "error": message})


def _server_error(message: str, error: Exception) -> JSONResponse:
    logger.error(f"{message}: {error}")
    return JSONResponse(status_code=500, content={"success": False, "error": message})


router = APIRouter()


@router.get("/")
async def root():
    """API information"""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "endpoints": {
            "streaming": {
                "/tri-step-analysis-stream": "Web search, company details, summary and solution mapping",
                "/dual-step-analysis-stream": "Company research and strategic analysis",
            },
            "rest": {
                "/api/analysis": "Run an analysis and return the combined report",
                "/api/company-analytics": "List stored analyses",
                "/api/company-analytics/{uuid}": "Get or delete a stored analysis",
                "/api/company-sources/{uuid}": "Sources of a stored analysis, grouped by category",
            },
        },
    }


# Server-Sent Events endpoints
def _stream_response(pipeline: AnalysisPipeline, store, request: AnalysisRequest) -> StreamingResponse:
    session = AnalysisStreamSession(pipeline, store, request)
    return StreamingResponse(
        session.frames(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/tri-step-analysis-stream")
async def tri_step_analysis_stream(body: Optional[AnalysisRequestBody] = None,
                                   pipelines=Depends(get_pipelines), store=Depends(get_store)):
    """Stream the search-backed tri-step analysis"""
    return _stream_response(pipelines[TRI_STEP.name], store, _to_request(body))


@router.post("/dual-step-analysis-stream")
async def dual_step_analysis_stream(body: Optional[AnalysisRequestBody] = None,
                                    pipelines=Depends(get_pipelines), store=Depends(get_store)):
    """Stream the dual-step research and strategic analysis"""
    return _stream_response(pipelines[DUAL_STEP.name], store, _to_request(body))


# REST endpoints
@router.post("/api/analysis", response_model=AnalysisResponse)
async def api_analysis(body: Optional[AnalysisRunBody] = None,
                       pipelines=Depends(get_pipelines), store=Depends(get_store)):
    """Run an analysis to completion and return the combined report"""
    request = _to_request(body)
    pipeline = pipelines.get(body.variant)
    if pipeline is None:
        raise HTTPException(status_code=400, detail=f"Unknown variant '{body.variant}'")

    report = await collect_analysis(pipeline, request, store)
    if report.error:
        return AnalysisResponse(success=False, analysisUuid=report.run_id,
                                status=report.status.value, error=report.error)
    return AnalysisResponse(success=True, analysisUuid=report.run_id,
                            status=report.status.value, report=report.text)


@router.get("/api/company-analytics")
async def list_company_analytics(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                                 store=Depends(get_store)):
    """Stored analyses, newest first"""
    try:
        rows, total = await store.list_page(page, limit)
    except PersistenceError as e:
        return _server_error("Failed to fetch company analytics", e)

    return {
        "success": True,
        "data": [row.to_summary() for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


@router.get("/api/company-analytics/{analysis_uuid}")
async def get_company_analytics(analysis_uuid: str, store=Depends(get_store)):
    try:
        row = await store.get_by_uuid(analysis_uuid)
    except PersistenceError as e:
        return _server_error("Failed to fetch company analysis", e)

    if row is None:
        return _not_found("Company analysis not found")
    return {"success": True, "data": row.to_dict()}


@router.delete("/api/company-analytics/{analysis_uuid}")
async def delete_company_analytics(analysis_uuid: str, store=Depends(get_store)):
    try:
        deleted = await store.delete_by_uuid(analysis_uuid)
    except PersistenceError as e:
        return _server_error("Failed to delete company analysis", e)

    if not deleted:
        return _not_found("Company analysis not found")
    return {"success": True, "message": "Company analysis deleted successfully"}


@router.get("/api/company-sources/{analysis_uuid}")
async def get_company_sources(analysis_uuid: str, store=Depends(get_store)):
    try:
        row = await store.get_by_uuid(analysis_uuid)
    except PersistenceError as e:
        return _server_error("Failed to fetch sources", e)

    if row is None:
        return _not_found("Analysis not found")

    sources = row.sources or []
    return {
        "success": True,
        "company_name": row.company_name,
        "sources_by_category": group_sources_by_category(sources),
        "all_sources": sources,
        "total_sources": len(sources),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


# Health check
@router.get("/health")
async def health_check(request: Request):
    """Health check"""
    pipelines = request.app.state.pipelines or {}
    tri_step = pipelines.get(TRI_STEP.name)
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "pipelines": sorted(pipelines),
        "providers": tri_step.generators.available if tri_step else [],
        "web_search": bool(tri_step and tri_step.search_client),
        "store_initialized": request.app.state.store is not None,
    }


def create_app(settings: Optional[Settings] = None, pipelines: Optional[Dict[str, AnalysisPipeline]] = None,
               store: Optional[AnalysisRepository] = None) -> FastAPI:
    """Build the app. Anything not injected is constructed from settings at startup."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize and cleanup the pipelines and the result store"""
        engine = None
        try:
            if app.state.pipelines is None:
                logger.info("Initializing analysis pipelines...")
                app.state.pipelines = build_pipelines(settings)
            if app.state.store is None:
                engine = create_engine(settings)
                if settings.db_create_tables:
                    await create_tables(engine)
                app.state.store = AnalysisRepository(create_session_factory(engine))
            logger.info("Company Analysis API initialized successfully")
            yield
        except Exception as e:
            logger.error(f"Failed to initialize Company Analysis API: {e}")
            raise
        finally:
            if engine is not None:
                await engine.dispose()
            logger.info("Shutting down API...")

    app = FastAPI(
        title=API_TITLE,
        description="Real-time company analysis with streaming progress updates",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipelines = pipelines
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
