import asyncio
from contextlib import aclosing

import pytest

from company_insights.common import AnalysisRequest, EventKind, RunStatus
from company_insights.mcp_tools import MISSING_PROMPT, AnalysisToolHandler, build_mcp_server, collect_analysis
from company_insights.pipeline import DUAL_STEP, TRI_STEP

from fakes import DETAILS, NOT_FOUND_TEXT, SUMMARY, VOICE, FakeSearchClient, MemoryStore, make_pipeline

pytestmark = pytest.mark.unit


class BrokenAfterDetails:
    """Forwards a real pipeline but raises once step 1 completes."""

    def __init__(self, pipeline):
        self.pipeline = pipeline
        self.variant = pipeline.variant

    def model_tag(self, request):
        return self.pipeline.model_tag(request)

    async def stream(self, request, run):
        async with aclosing(self.pipeline.stream(request, run)) as events:
            async for event in events:
                yield event
                if event.kind is EventKind.STAGE_DONE and event.step == 1:
                    raise KeyError("stage_outputs")


def test_tri_step_report_is_labelled_and_saved():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE])
    store = MemoryStore()

    report = asyncio.run(collect_analysis(pipeline, AnalysisRequest("Acme Corp"), store))

    assert report.status is RunStatus.COMPLETED
    assert report.text.startswith(
        "**STEP 1: COMPANY DETAILS**\nAcme Corp builds industrial rockets.\n\n"
        "**STEP 2: COMPREHENSIVE ANALYSIS**\nAcme Corp is a rocket maker.\n\n"
        f"**STEP 3: COMPANY VOICE REVIEWS**\n{VOICE[0]}\n\n"
    )
    assert "DATA SOURCES" in report.text
    assert "Total Sources: 2" in report.text
    assert [record.uuid for record in store.saved] == [report.run_id]


def test_dual_step_report():
    pipeline, _, _ = make_pipeline([DETAILS, ["Strategic analysis."]], variant=DUAL_STEP)

    report = asyncio.run(collect_analysis(pipeline, AnalysisRequest("Acme Corp")))

    assert report.text == (
        "**STEP 1: COMPANY RESEARCH**\nAcme Corp builds industrial rockets.\n\n"
        "**STEP 2: STRATEGIC ANALYSIS**\nStrategic analysis."
    )
    assert report.record.reviews is None


def test_fatal_error_returns_the_error_text():
    pipeline, _, _ = make_pipeline([DETAILS, [RuntimeError("overloaded")], VOICE])
    store = MemoryStore()

    report = asyncio.run(collect_analysis(pipeline, AnalysisRequest("Acme Corp"), store))

    assert report.text == "OpenAI API Error (Step 2): overloaded"
    assert report.status is RunStatus.FAILED
    assert len(store.saved) == 1


def test_unexpected_error_still_saves_the_run():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE])
    store = MemoryStore()

    report = asyncio.run(collect_analysis(BrokenAfterDetails(pipeline), AnalysisRequest("Acme Corp"), store))

    assert report.status is RunStatus.FAILED
    assert report.error == "'stage_outputs'"
    assert report.text == report.error
    assert [record.uuid for record in store.saved] == [report.run_id]
    assert store.saved[0].company_details == "Acme Corp builds industrial rockets."


def test_not_found_report():
    pipeline, text_client, _ = make_pipeline([[NOT_FOUND_TEXT], SUMMARY, VOICE],
                                             search_client=FakeSearchClient(None))

    report = asyncio.run(collect_analysis(pipeline, AnalysisRequest("Nowhere Ltd")))

    assert report.status is RunStatus.NOT_FOUND
    assert report.text.startswith("**COMPANY NOT FOUND**")
    assert len(text_client.prompts) == 1


def test_save_failure_does_not_lose_the_report():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE])

    report = asyncio.run(collect_analysis(pipeline, AnalysisRequest("Acme Corp"), MemoryStore(fail=True)))

    assert report.status is RunStatus.COMPLETED
    assert report.error is None


def test_handler_requires_a_prompt():
    handler = AnalysisToolHandler({})

    assert asyncio.run(handler.analyze_tri_step("  ")) == MISSING_PROMPT


def test_handler_passes_hints_to_the_prompts():
    pipeline, text_client, _ = make_pipeline([DETAILS, SUMMARY, VOICE])
    handler = AnalysisToolHandler({TRI_STEP.name: pipeline})

    text = asyncio.run(handler.analyze_tri_step("Acme Corp", "250", "29ABCDE1234F1Z5"))

    assert "**STEP 3: COMPANY VOICE REVIEWS**" in text
    assert "Reported employee count: 250" in text_client.prompts[0]
    assert "GSTIN: 29ABCDE1234F1Z5" in text_client.prompts[0]


def test_mcp_server_registers_both_tools():
    server = build_mcp_server(AnalysisToolHandler({}))

    tools = asyncio.run(server.list_tools())

    assert {tool.name for tool in tools} == {"analyzeTriStepCompanyBusiness", "analyzeDualStepCompanyBusiness"}
