"""
Multi-stage company analysis pipeline.

Stages run in order (web search -> company details -> analysis -> solution mapping)
and each one is an async generator of PipelineEvents. The orchestrator accumulates
fragments per stage, applies the not-found short-circuit after the details stage
and stops on the first fatal error. It never persists anything: the transport that
consumes the event stream owns the single write.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Dict, List, Optional

from .common import (
    ANALYSIS_STEP,
    DETAILS_STEP,
    SEARCH_STEP,
    VOICE_STEP,
    AnalysisRequest,
    AnalysisRun,
    EventKind,
    PipelineEvent,
    PipelinePhase,
    RunStatus,
)
from .config import Settings
from .detection import DEFAULT_POLICY, NotFoundPolicy, NotFoundVerdict
from .errors import ConfigurationError, UpstreamGenerationError
from .prompts import (
    CompanyHints,
    build_details_prompt,
    build_strategic_analysis_prompt,
    build_summary_prompt,
    build_voice_prompt,
)
from .providers import TextGeneratorRegistry
from .search import SEARCH_CATEGORIES, SearchBundle, WebSearchClient
from .sources import extract_domain, extract_sources_metadata, format_search_results, platform_name

logger = logging.getLogger(__name__)

NO_SEARCH_DATA = "Limited search data available. Proceeding with analysis."
SEARCH_ERROR_CONTEXT = "Search encountered an error. Proceeding with limited data."
NOT_FOUND_MESSAGE = "Company information could not be verified. Please verify the company name."


@dataclass(frozen=True)
class PipelineVariant:
    name: str
    use_search: bool
    include_voice: bool
    detailed_analysis: bool = False


TRI_STEP = PipelineVariant("tri-step", use_search=True, include_voice=True)
DUAL_STEP = PipelineVariant("dual-step", use_search=False, include_voice=False, detailed_analysis=True)


@dataclass(frozen=True)
class GenerationParams:
    max_tokens: int
    temperature: float


@dataclass(frozen=True)
class Stage:
    step: int
    phase: PipelinePhase
    run: Callable[[AnalysisRequest, AnalysisRun], AsyncGenerator[PipelineEvent, None]]
    transition: str


class AnalysisPipeline:
    """Drives the ordered stages for one variant and exposes a single event stream."""

    details_params = GenerationParams(max_tokens=1500, temperature=0.7)
    details_params_without_search = GenerationParams(max_tokens=4096, temperature=0.3)
    summary_params = GenerationParams(max_tokens=300, temperature=0.7)
    strategic_params = GenerationParams(max_tokens=4096, temperature=0.7)
    voice_params = GenerationParams(max_tokens=800, temperature=0.8)

    def __init__(self, generators: TextGeneratorRegistry, search_client: Optional[WebSearchClient] = None,
                 variant: PipelineVariant = TRI_STEP, default_model: str = "gpt-4o",
                 generation_timeout: Optional[float] = None,
                 not_found_policy: NotFoundPolicy = DEFAULT_POLICY):
        self.generators = generators
        self.search_client = search_client
        self.variant = variant
        self.default_model = default_model
        self.generation_timeout = generation_timeout
        self.not_found_policy = not_found_policy

    def model_for(self, request: AnalysisRequest) -> str:
        return request.model or self.default_model

    def model_tag(self, request: AnalysisRequest) -> str:
        """Identifies the pipeline/version that produced a stored row"""
        model = self.model_for(request)
        if self.variant.use_search:
            return f"{model}-with-tavily-search"
        return model

    def _stages(self) -> List[Stage]:
        stages = []
        if self.variant.use_search:
            stages.append(Stage(SEARCH_STEP, PipelinePhase.SEARCHING, self._search_stage,
                                "Searching the web for live company data..."))
        stages.append(Stage(DETAILS_STEP, PipelinePhase.DETAILING, self._details_stage,
                            "Analyzing gathered data with AI..."))
        stages.append(Stage(ANALYSIS_STEP, PipelinePhase.ANALYZING, self._analysis_stage,
                            "Creating strategic analysis..."))
        if self.variant.include_voice:
            stages.append(Stage(VOICE_STEP, PipelinePhase.VOICING, self._voice_stage,
                                "Mapping to solutions..."))
        return stages

    async def stream(self, request: AnalysisRequest,
                     run: Optional[AnalysisRun] = None) -> AsyncGenerator[PipelineEvent, None]:
        """Run every stage in order, yielding progress events"""
        run = run or AnalysisRun(company_name=request.company_name)
        stages = self._stages()
        previous = None

        for stage in stages:
            if previous is not None:
                yield PipelineEvent.transition(stage.transition, previous.step, stage.step)

            run.enter(stage.phase)
            logger.info(f"Step {stage.step} ({stage.phase.value}) for {request.company_name} [{run.id}]")

            async with aclosing(stage.run(request, run)) as events:
                async for event in events:
                    if event.kind is EventKind.FRAGMENT:
                        run.append(event.step, event.text)
                    elif event.kind is EventKind.STAGE_DONE:
                        event.final_step = stage is stages[-1]
                    elif event.kind is EventKind.NOT_FOUND:
                        run.finish(RunStatus.NOT_FOUND)
                        logger.info(f"Company not found: {request.company_name} [{run.id}]")
                        yield event
                        yield PipelineEvent.completed(event.step, run.id, run.status)
                        return
                    elif event.kind is EventKind.FATAL_ERROR:
                        run.finish(RunStatus.FAILED, event.error)
                        logger.error(f"Pipeline failed at step {event.step} [{run.id}]: {event.error}")
                        yield event
                        return
                    yield event

            previous = stage

        run.finish(RunStatus.COMPLETED)
        logger.info(f"Pipeline completed for {request.company_name} [{run.id}] in {run.latency_ms}ms")
        yield PipelineEvent.completed(previous.step, run.id, run.status)

    # ----------------------------- stages -----------------------------

    async def _search_stage(self, request: AnalysisRequest, run: AnalysisRun) -> AsyncGenerator[PipelineEvent, None]:
        if self.search_client is None:
            logger.warning("Web search client not available, skipping web search")
            run.search_context = NO_SEARCH_DATA
            yield PipelineEvent.fragment(SEARCH_STEP, "Web search unavailable. Proceeding without live data...\n\n")
            yield PipelineEvent.stage_done(SEARCH_STEP)
            return

        yield PipelineEvent.fragment(SEARCH_STEP, "Searching the web for live company data...\n\n")

        try:
            bundle = await self.search_client.search_company(request.company_name)
        except Exception as e:
            logger.exception(f"Web search failed for {request.company_name}")
            run.search_context = SEARCH_ERROR_CONTEXT
            summary = f"Search error: {e}. Continuing...\n\n"
        else:
            if bundle is None:
                run.search_context = NO_SEARCH_DATA
                summary = "Limited search results. Proceeding with available data...\n\n"
            else:
                run.search_context = format_search_results(bundle)
                run.sources_metadata = extract_sources_metadata(bundle)
                summary = _source_summary(bundle)

        yield PipelineEvent.fragment(SEARCH_STEP, summary)
        if run.sources_metadata is not None:
            yield PipelineEvent.sources(run.sources_metadata)
        yield PipelineEvent.stage_done(SEARCH_STEP)

    async def _details_stage(self, request: AnalysisRequest, run: AnalysisRun) -> AsyncGenerator[PipelineEvent, None]:
        prompt = build_details_prompt(request.company_name, run.search_context, _hints(request))
        params = self.details_params if self.variant.use_search else self.details_params_without_search
        details = ""

        async with aclosing(self._generate(DETAILS_STEP, prompt, request, params)) as events:
            async for event in events:
                if event.kind is EventKind.FRAGMENT:
                    details += event.text
                elif event.kind is EventKind.STAGE_DONE:
                    verdict = self.not_found_policy.evaluate(details, run.has_search_evidence,
                                                            search_stage=self.variant.use_search)
                    logger.info(f"Details verdict for {request.company_name}: {verdict.value}")
                    if verdict is NotFoundVerdict.NOT_FOUND:
                        yield PipelineEvent.not_found(DETAILS_STEP, NOT_FOUND_MESSAGE)
                        return
                yield event

    async def _analysis_stage(self, request: AnalysisRequest, run: AnalysisRun) -> AsyncGenerator[PipelineEvent, None]:
        if self.variant.detailed_analysis:
            prompt = build_strategic_analysis_prompt(request.company_name, run.text(DETAILS_STEP), _hints(request))
            params = self.strategic_params
        else:
            prompt = build_summary_prompt(request.company_name, run.text(DETAILS_STEP), _hints(request))
            params = self.summary_params

        async with aclosing(self._generate(ANALYSIS_STEP, prompt, request, params)) as events:
            async for event in events:
                yield event

    async def _voice_stage(self, request: AnalysisRequest, run: AnalysisRun) -> AsyncGenerator[PipelineEvent, None]:
        prompt = build_voice_prompt(request.company_name, run.search_context, _hints(request))

        async with aclosing(self._generate(VOICE_STEP, prompt, request, self.voice_params)) as events:
            async for event in events:
                yield event

    # ----------------------------- generation -----------------------------

    async def _generate(self, step: int, prompt: str, request: AnalysisRequest,
                        params: GenerationParams) -> AsyncGenerator[PipelineEvent, None]:
        """Stream one provider call as fragment events, ending in stage_done or fatal_error"""
        model = self.model_for(request)
        try:
            client = self.generators.resolve(model)
        except ConfigurationError as e:
            logger.error(f"Step {step}: {e}")
            yield PipelineEvent.fatal_error(step, str(e))
            return

        fragments = client.stream(prompt, model=model, max_tokens=params.max_tokens,
                                  temperature=params.temperature)
        async with aclosing(fragments):
            while True:
                try:
                    async with asyncio.timeout(self.generation_timeout):
                        text = await anext(fragments)
                except StopAsyncIteration:
                    break
                except TimeoutError:
                    error = UpstreamGenerationError(
                        client.label, step, f"no output received for {self.generation_timeout}s")
                    logger.error(str(error))
                    yield PipelineEvent.fatal_error(step, str(error))
                    return
                except Exception as e:
                    error = UpstreamGenerationError(client.label, step, str(e))
                    logger.exception(str(error))
                    yield PipelineEvent.fatal_error(step, str(error))
                    return

                if text:
                    yield PipelineEvent.fragment(step, text)

        yield PipelineEvent.stage_done(step)


def _hints(request: AnalysisRequest) -> CompanyHints:
    return CompanyHints(number_of_employees=request.number_of_employees, company_gstin=request.company_gstin)


def _source_summary(bundle: SearchBundle) -> str:
    """Short per-category tally shown to the client while the search stage finishes"""
    summary = f"Found {bundle.total_results} verified sources!\n\n"
    summary += "Sources by category:\n"
    for category in SEARCH_CATEGORIES:
        search_data = bundle.category(category.key)
        if not search_data or not search_data.results:
            continue
        summary += f"  {category.icon} {category.label}: {len(search_data.results)} sources\n"
        for idx, result in enumerate(search_data.results[:3], 1):
            summary += f"     {idx}. {platform_name(extract_domain(result.url))}\n"
    return summary + "\n"


def build_pipelines(settings: Settings) -> Dict[str, AnalysisPipeline]:
    """Construct provider clients once and share them between the pipeline variants"""
    generators = TextGeneratorRegistry.from_settings(settings)

    search_client = None
    if settings.tavily_api_key:
        search_client = WebSearchClient(api_key=settings.tavily_api_key, timeout=settings.search_timeout)
        logger.info("Tavily search client initialized")
    else:
        logger.warning("TAVILY_API_KEY environment variable is not set; web search is disabled")

    shared = dict(
        generators=generators,
        default_model=settings.default_model,
        generation_timeout=settings.generation_timeout,
    )
    return {
        TRI_STEP.name: AnalysisPipeline(search_client=search_client, variant=TRI_STEP, **shared),
        DUAL_STEP.name: AnalysisPipeline(variant=DUAL_STEP, **shared),
    }
