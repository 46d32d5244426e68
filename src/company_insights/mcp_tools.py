"""
MCP tool adapter: runs a pipeline to completion and returns one labelled text report
"""

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Dict, Optional

from mcp.server.fastmcp import FastMCP

from .common import (
    ANALYSIS_STEP,
    DETAILS_STEP,
    VOICE_STEP,
    AnalysisRecord,
    AnalysisRequest,
    AnalysisRun,
    EventKind,
    RunStatus,
)
from .errors import PersistenceError
from .pipeline import DUAL_STEP, NOT_FOUND_MESSAGE, TRI_STEP, AnalysisPipeline
from .sources import NO_SOURCES
from .streaming import build_analysis_record

logger = logging.getLogger(__name__)

SERVER_NAME = "enhanced-business-analytics-server"
MISSING_PROMPT = "Missing 'prompt' (company name) in request body."


@dataclass
class AnalysisReport:
    run_id: str
    status: RunStatus
    text: str
    record: Optional[AnalysisRecord] = None
    error: Optional[str] = None


def _report_text(pipeline: AnalysisPipeline, run: AnalysisRun, outputs: Dict[int, str]) -> str:
    details = outputs.get(DETAILS_STEP, "")
    analysis = outputs.get(ANALYSIS_STEP, "")

    if run.status is RunStatus.NOT_FOUND:
        return f"**COMPANY NOT FOUND**\n{NOT_FOUND_MESSAGE}\n\n{details}".rstrip()

    if not pipeline.variant.include_voice:
        return (
            f"**STEP 1: COMPANY RESEARCH**\n{details}\n\n"
            f"**STEP 2: STRATEGIC ANALYSIS**\n{analysis}"
        )

    sources_section = run.sources_metadata.display if run.sources_metadata else NO_SOURCES
    return (
        f"**STEP 1: COMPANY DETAILS**\n{details}\n\n"
        f"**STEP 2: COMPREHENSIVE ANALYSIS**\n{analysis}\n\n"
        f"**STEP 3: COMPANY VOICE REVIEWS**\n{outputs.get(VOICE_STEP, '')}\n\n"
        f"{sources_section}"
    )


async def collect_analysis(pipeline: AnalysisPipeline, request: AnalysisRequest, store=None) -> AnalysisReport:
    """Drain the event stream, keeping only stage text, and persist the run once when a store is given"""
    run = AnalysisRun(company_name=request.company_name)
    outputs: Dict[int, str] = {}
    error = None

    logger.info(f"Processing {pipeline.variant.name} analysis for: {request.company_name}")
    try:
        async with aclosing(pipeline.stream(request, run)) as events:
            async for event in events:
                if event.kind is EventKind.FRAGMENT:
                    outputs[event.step] = outputs.get(event.step, "") + event.text
                elif event.kind is EventKind.FATAL_ERROR:
                    error = event.error
                    break
    except Exception as e:
        logger.exception(f"Error in {pipeline.variant.name} analysis [{run.id}]")
        error = str(e)
        if run.status is RunStatus.RUNNING:
            run.finish(RunStatus.FAILED, error)

    record = build_analysis_record(run, request, pipeline.model_tag(request), outputs,
                                   include_reviews=pipeline.variant.include_voice)
    if store is not None:
        try:
            await store.save(record)
        except PersistenceError as e:
            logger.error(f"Failed to save analysis {run.id}: {e}")

    text = error if error else _report_text(pipeline, run, outputs)
    logger.info(f"{pipeline.variant.name} analysis finished for {request.company_name} ({run.status.value})")
    return AnalysisReport(run_id=run.id, status=run.status, text=text, record=record, error=error)


class AnalysisToolHandler:
    """Tool entry points shared by the MCP server and the non-streaming REST endpoint."""

    def __init__(self, pipelines: Dict[str, AnalysisPipeline], store=None):
        self.pipelines = pipelines
        self.store = store

    async def analyze(self, variant: str, prompt: Optional[str], number_of_employees: Optional[str] = None,
                      company_gstin: Optional[str] = None, model: Optional[str] = None) -> str:
        if not prompt or not prompt.strip():
            return MISSING_PROMPT
        request = AnalysisRequest(
            company_name=prompt,
            number_of_employees=number_of_employees,
            company_gstin=company_gstin,
            model=model,
        )
        report = await collect_analysis(self.pipelines[variant], request, self.store)
        return report.text

    async def analyze_tri_step(self, prompt: str, number_of_employees: Optional[str] = None,
                               company_gstin: Optional[str] = None) -> str:
        return await self.analyze(TRI_STEP.name, prompt, number_of_employees, company_gstin)

    async def analyze_dual_step(self, prompt: str, number_of_employees: Optional[str] = None,
                                company_gstin: Optional[str] = None) -> str:
        return await self.analyze(DUAL_STEP.name, prompt, number_of_employees, company_gstin)


def build_mcp_server(handler: AnalysisToolHandler) -> FastMCP:
    server = FastMCP(SERVER_NAME)

    @server.tool(
        name="analyzeTriStepCompanyBusiness",
        description="Live web search, company details, summary and solution mapping for a company",
    )
    async def analyze_tri_step(prompt: str, numberOfEmployees: Optional[str] = None,
                               companyGstin: Optional[str] = None) -> str:
        return await handler.analyze_tri_step(prompt, numberOfEmployees, companyGstin)

    @server.tool(
        name="analyzeDualStepCompanyBusiness",
        description="Company research and comprehensive strategic analysis for a company",
    )
    async def analyze_dual_step(prompt: str, numberOfEmployees: Optional[str] = None,
                                companyGstin: Optional[str] = None) -> str:
        return await handler.analyze_dual_step(prompt, numberOfEmployees, companyGstin)

    return server
