"""
Server-Sent Events transport for analysis runs.

Turns the orchestrator's events into `data: <json>` frames, keeps its own copy of
every stage's text and writes the result row exactly once, however the stream ends.
"""

import asyncio
import json
import logging
from contextlib import aclosing
from typing import AsyncGenerator, Dict, Optional

from .common import (
    ANALYSIS_STEP,
    DETAILS_STEP,
    STEP_NAMES,
    VOICE_STEP,
    AnalysisRecord,
    AnalysisRequest,
    AnalysisRun,
    EventKind,
    PipelineEvent,
    RunStatus,
    elapsed_ms,
)
from .errors import PersistenceError

logger = logging.getLogger(__name__)

NO_DETAILS = "No company details available."
ANALYSIS_SKIPPED = "Analysis skipped: company information could not be found."
NO_ANALYSIS = "No analysis generated."
NO_REVIEWS = "No reviews summary available."

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}


def sse_frame(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def event_payload(event: PipelineEvent, run: AnalysisRun) -> Optional[dict]:
    """Wire shape of one pipeline event"""
    if event.kind is EventKind.FRAGMENT:
        return {
            "text": event.text,
            "step": event.step,
            "stepName": STEP_NAMES[event.step],
            "uuid": run.id,
        }
    if event.kind is EventKind.TRANSITION:
        return {
            "transition": event.message,
            "step": f"transition-{event.step}-{event.to_step}",
            "message": event.message,
        }
    if event.kind is EventKind.STAGE_DONE:
        return {
            "stepComplete": event.message,
            "step": event.step,
            "finalStep": event.final_step,
        }
    if event.kind is EventKind.SOURCES:
        return {"type": "sources", "sourcesMetadata": event.data.to_dict()}
    if event.kind is EventKind.NOT_FOUND:
        return {
            "notFound": True,
            "step": event.step,
            "stepName": STEP_NAMES[event.step],
            "message": event.message,
            "finalStep": True,
        }
    if event.kind is EventKind.COMPLETED:
        payload = {"done": True, "allStepsComplete": True, **event.data}
        if run.sources_metadata is not None:
            payload["sourcesMetadata"] = run.sources_metadata.to_dict()
        return payload
    if event.kind is EventKind.FATAL_ERROR:
        return {"error": event.error}
    return None


def build_analysis_record(run: AnalysisRun, request: AnalysisRequest, model_tag: str,
                          outputs: Dict[int, str], include_reviews: bool = True) -> AnalysisRecord:
    """Record for the result store, with placeholders for stages that produced no text"""
    not_found = run.status is RunStatus.NOT_FOUND

    analysis = outputs.get(ANALYSIS_STEP) or (ANALYSIS_SKIPPED if not_found else NO_ANALYSIS)
    reviews = None
    if include_reviews:
        reviews = outputs.get(VOICE_STEP) or NO_REVIEWS

    sources = None
    if run.sources_metadata is not None and run.sources_metadata.total_sources:
        sources = run.sources_metadata.sources

    return AnalysisRecord(
        uuid=run.id,
        company_name=request.company_name,
        model=model_tag,
        latency_ms=elapsed_ms(run.started_at),
        analysis=analysis,
        company_details=outputs.get(DETAILS_STEP) or NO_DETAILS,
        reviews=reviews,
        sources=sources,
        number_of_employees=request.number_of_employees,
        company_gstin=request.company_gstin,
    )


class AnalysisStreamSession:
    """One streaming run: forwards frames to the client and owns the single result write."""

    def __init__(self, pipeline, store, request: AnalysisRequest):
        self.pipeline = pipeline
        self.store = store
        self.request = request
        self.run: Optional[AnalysisRun] = None
        self.outputs: Dict[int, str] = {}
        self.record: Optional[AnalysisRecord] = None
        self._save_task: Optional[asyncio.Task] = None

    async def frames(self) -> AsyncGenerator[str, None]:
        self.run = AnalysisRun(company_name=self.request.company_name)
        logger.info(f"Starting analysis for: {self.request.company_name} [UUID: {self.run.id}]")

        try:
            async with aclosing(self._event_frames()) as frames:
                async for frame in frames:
                    yield frame
        except (GeneratorExit, asyncio.CancelledError):
            logger.warning(f"Client disconnected from run {self.run.id}; saving partial results")
            await self._persist_shielded()
            raise

        error = await self._persist_shielded()
        if error:
            yield sse_frame({"error": error})

    async def _event_frames(self) -> AsyncGenerator[str, None]:
        try:
            async with aclosing(self.pipeline.stream(self.request, self.run)) as events:
                async for event in events:
                    if event.kind is EventKind.FRAGMENT:
                        self.outputs[event.step] = self.outputs.get(event.step, "") + event.text

                    payload = event_payload(event, self.run)
                    if payload is not None:
                        yield sse_frame(payload)

                    if event.kind is EventKind.FATAL_ERROR:
                        break
        except Exception as e:
            logger.exception(f"Error in analysis stream [{self.run.id}]")
            yield sse_frame({"error": str(e)})

    async def _persist_shielded(self) -> Optional[str]:
        """The write runs in its own task and outlives a cancelled consumer"""
        if self._save_task is None:
            self._save_task = asyncio.ensure_future(self._persist())
        return await asyncio.shield(self._save_task)

    async def _persist(self) -> Optional[str]:
        """Write the run's row. Returns an error message instead of raising."""
        if self.record is not None:
            return None

        self.record = build_analysis_record(
            self.run,
            self.request,
            self.pipeline.model_tag(self.request),
            self.outputs,
            include_reviews=self.pipeline.variant.include_voice,
        )
        if self.store is None:
            logger.warning(f"No result store configured; run {self.run.id} not saved")
            return None

        try:
            await self.store.save(self.record)
        except PersistenceError as e:
            logger.error(f"Failed to save analysis {self.run.id}: {e}")
            return f"Failed to save analysis: {e}"

        logger.info(f"Analysis saved for {self.request.company_name} "
                    f"[{self.record.uuid}] ({self.record.latency_ms}ms)")
        return None
