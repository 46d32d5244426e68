"""
Tests for the analysis pipeline orchestrator.
"""

import asyncio
from contextlib import aclosing

import pytest

from company_insights.common import AnalysisRequest, AnalysisRun, EventKind, RunStatus
from company_insights.pipeline import (
    DUAL_STEP,
    NO_SEARCH_DATA,
    SEARCH_ERROR_CONTEXT,
    TRI_STEP,
)
from company_insights.providers import ANTHROPIC

from fakes import (
    DETAILS,
    HANG,
    NOT_FOUND_TEXT,
    SUMMARY,
    VOICE,
    FakeSearchClient,
    collect,
    make_pipeline,
)

pytestmark = pytest.mark.unit


def run_pipeline(pipeline, company="Acme Corp", **kwargs):
    run = AnalysisRun(company_name=company)
    events = asyncio.run(collect(pipeline.stream(AnalysisRequest(company, **kwargs), run)))
    return events, run


def kinds(events):
    return [event.kind for event in events]


def test_tri_step_runs_every_stage_in_order():
    pipeline, text_client, search_client = make_pipeline([DETAILS, SUMMARY, VOICE])

    events, run = run_pipeline(pipeline)

    assert search_client.calls == ["Acme Corp"]
    assert kinds(events) == [
        EventKind.FRAGMENT, EventKind.FRAGMENT, EventKind.SOURCES, EventKind.STAGE_DONE,
        EventKind.TRANSITION, EventKind.FRAGMENT, EventKind.FRAGMENT, EventKind.STAGE_DONE,
        EventKind.TRANSITION, EventKind.FRAGMENT, EventKind.STAGE_DONE,
        EventKind.TRANSITION, EventKind.FRAGMENT, EventKind.STAGE_DONE,
        EventKind.COMPLETED,
    ]
    assert run.status is RunStatus.COMPLETED
    assert run.latency_ms >= 1
    assert run.text(1) == "Acme Corp builds industrial rockets."
    assert run.text(2) == "Acme Corp is a rocket maker."
    assert run.text(3) == VOICE[0]
    assert events[-1].data == {"analysisUuid": run.id, "status": "completed"}


def test_only_the_last_stage_is_final():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE])

    events, _ = run_pipeline(pipeline)

    done = [(event.step, event.final_step) for event in events if event.kind is EventKind.STAGE_DONE]
    assert done == [(0, False), (1, False), (2, False), (3, True)]


def test_transitions_link_consecutive_steps():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE])

    events, _ = run_pipeline(pipeline)

    transitions = [(event.step, event.to_step) for event in events if event.kind is EventKind.TRANSITION]
    assert transitions == [(0, 1), (1, 2), (2, 3)]


def test_stage_inputs_follow_the_data_flow():
    pipeline, text_client, _ = make_pipeline([DETAILS, SUMMARY, VOICE])

    _, run = run_pipeline(pipeline)

    details_prompt, summary_prompt, voice_prompt = text_client.prompts
    assert "LIVE WEB SEARCH RESULTS" in details_prompt
    assert "Acme Corp builds industrial rockets." in summary_prompt
    # solution mapping works from the search text, not from the summary
    assert run.search_context in voice_prompt
    assert "Acme Corp is a rocket maker." not in voice_prompt


def test_sources_event_carries_metadata():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE])

    events, run = run_pipeline(pipeline)

    sources = [event for event in events if event.kind is EventKind.SOURCES]
    assert len(sources) == 1
    assert sources[0].data.total_sources == 2
    assert run.has_search_evidence


def test_sentinel_without_sources_ends_the_run_as_not_found():
    pipeline, text_client, _ = make_pipeline([[NOT_FOUND_TEXT], SUMMARY, VOICE],
                                             search_client=FakeSearchClient(None))

    events, run = run_pipeline(pipeline, company="Nowhere Ltd")

    assert kinds(events)[-2:] == [EventKind.NOT_FOUND, EventKind.COMPLETED]
    assert events[-2].final_step is True
    assert events[-1].data["status"] == "notFound"
    assert run.status is RunStatus.NOT_FOUND
    assert len(text_client.prompts) == 1
    assert not [event for event in events if event.kind is EventKind.FRAGMENT and event.step > 1]


def test_sentinel_wins_even_with_sources():
    pipeline, text_client, _ = make_pipeline([[NOT_FOUND_TEXT], SUMMARY, VOICE])

    _, run = run_pipeline(pipeline)

    assert run.status is RunStatus.NOT_FOUND
    assert len(text_client.prompts) == 1


def test_phrase_with_real_sources_is_not_a_not_found():
    details = ["Revenue figures are not available. Please verify with the registrar."]
    pipeline, text_client, _ = make_pipeline([details, SUMMARY, VOICE])

    _, run = run_pipeline(pipeline)

    assert run.status is RunStatus.COMPLETED
    assert len(text_client.prompts) == 3


def test_phrase_after_empty_search_is_not_a_not_found():
    details = ["We were unable to find this company."]
    pipeline, text_client, _ = make_pipeline([details, SUMMARY, VOICE], search_client=FakeSearchClient(None))

    _, run = run_pipeline(pipeline)

    assert run.status is RunStatus.COMPLETED
    assert len(text_client.prompts) == 3


def test_phrase_after_search_outage_is_not_a_not_found():
    details = ["Infosys is an IT services firm. Profit After Tax: not available."]
    search_client = FakeSearchClient(error=RuntimeError("tavily down"))
    pipeline, text_client, _ = make_pipeline([details, SUMMARY, VOICE], search_client=search_client)

    _, run = run_pipeline(pipeline, company="Infosys")

    assert run.status is RunStatus.COMPLETED
    assert len(text_client.prompts) == 3
    assert run.text(3) == VOICE[0]


def test_dual_step_phrase_is_a_not_found():
    details = ["We were unable to find this company."]
    pipeline, text_client, _ = make_pipeline([details, ["Strategic analysis."]], variant=DUAL_STEP)

    events, run = run_pipeline(pipeline, company="Nowhere Ltd")

    assert run.status is RunStatus.NOT_FOUND
    assert len(text_client.prompts) == 1
    assert EventKind.NOT_FOUND in kinds(events)


def test_search_failure_degrades_to_placeholder():
    search_client = FakeSearchClient(error=RuntimeError("quota exceeded"))
    pipeline, text_client, _ = make_pipeline([DETAILS, SUMMARY, VOICE], search_client=search_client)

    events, run = run_pipeline(pipeline)

    assert run.status is RunStatus.COMPLETED
    assert run.search_context == SEARCH_ERROR_CONTEXT
    assert run.sources_metadata is None
    assert EventKind.SOURCES not in kinds(events)
    assert SEARCH_ERROR_CONTEXT in text_client.prompts[0]


def test_empty_search_degrades_to_placeholder():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE], search_client=FakeSearchClient(None))

    _, run = run_pipeline(pipeline)

    assert run.status is RunStatus.COMPLETED
    assert run.search_context == NO_SEARCH_DATA


def test_missing_search_client_still_runs_the_search_stage():
    pipeline, _, _ = make_pipeline([DETAILS, SUMMARY, VOICE], search_client=None)

    events, run = run_pipeline(pipeline)

    assert events[0].step == 0
    assert run.search_context == NO_SEARCH_DATA
    assert run.status is RunStatus.COMPLETED


def test_provider_error_is_fatal_and_stops_later_stages():
    pipeline, text_client, _ = make_pipeline([DETAILS, ["partial ", RuntimeError("boom")], VOICE])

    events, run = run_pipeline(pipeline)

    assert events[-1].kind is EventKind.FATAL_ERROR
    assert events[-1].error == "OpenAI API Error (Step 2): boom"
    assert EventKind.COMPLETED not in kinds(events)
    assert run.status is RunStatus.FAILED
    assert run.text(2) == "partial "
    assert len(text_client.prompts) == 2
    assert text_client.closed == 2


def test_missing_provider_credential_is_fatal():
    pipeline, text_client, _ = make_pipeline([DETAILS, SUMMARY, VOICE], provider=ANTHROPIC)

    events, run = run_pipeline(pipeline)

    assert events[-1].kind is EventKind.FATAL_ERROR
    assert events[-1].step == 1
    assert events[-1].error == "OpenAI client not initialized. OPENAI_API_KEY is missing."
    assert run.status is RunStatus.FAILED
    assert text_client.prompts == []


def test_claude_models_use_the_anthropic_client():
    pipeline, text_client, _ = make_pipeline([DETAILS, SUMMARY, VOICE], provider=ANTHROPIC)

    _, run = run_pipeline(pipeline, model="claude-sonnet-4-5")

    assert run.status is RunStatus.COMPLETED
    assert text_client.models == ["claude-sonnet-4-5"] * 3


def test_stalled_provider_times_out():
    pipeline, text_client, _ = make_pipeline([[HANG], SUMMARY, VOICE], generation_timeout=0.05)

    events, run = run_pipeline(pipeline)

    assert events[-1].kind is EventKind.FATAL_ERROR
    assert "no output received" in events[-1].error
    assert run.status is RunStatus.FAILED
    assert text_client.closed == 1


def test_dual_step_skips_search_and_solution_mapping():
    search_client = FakeSearchClient()
    pipeline, text_client, _ = make_pipeline([DETAILS, ["Strategic analysis."]], variant=DUAL_STEP,
                                             search_client=search_client)

    events, run = run_pipeline(pipeline)

    assert search_client.calls == []
    assert {event.step for event in events if event.kind is EventKind.FRAGMENT} == {1, 2}
    done = [(event.step, event.final_step) for event in events if event.kind is EventKind.STAGE_DONE]
    assert done == [(1, False), (2, True)]
    assert run.status is RunStatus.COMPLETED
    assert "Do not provide speculative data" in text_client.prompts[0]
    assert "Strategic Position Analysis" in text_client.prompts[1]


def test_closing_the_stream_closes_the_provider_stream():
    pipeline, text_client, _ = make_pipeline([DETAILS, ["one ", "two ", "three"], VOICE])
    run = AnalysisRun(company_name="Acme Corp")

    async def main():
        seen = []
        async with aclosing(pipeline.stream(AnalysisRequest("Acme Corp"), run)) as events:
            async for event in events:
                seen.append(event)
                if event.kind is EventKind.FRAGMENT and event.step == 2:
                    break
        return seen

    seen = asyncio.run(main())

    assert seen[-1].text == "one "
    assert run.text(2) == "one "
    assert run.status is RunStatus.RUNNING
    assert text_client.closed == 2
    assert len(text_client.prompts) == 2


def test_model_tag_names_the_pipeline():
    tri, _, _ = make_pipeline([])
    dual, _, _ = make_pipeline([], variant=DUAL_STEP)
    request = AnalysisRequest("Acme Corp")

    assert tri.model_tag(request) == "gpt-4o-with-tavily-search"
    assert dual.model_tag(request) == "gpt-4o"
    assert tri.model_tag(AnalysisRequest("Acme Corp", model="gpt-4.1")) == "gpt-4.1-with-tavily-search"
    assert TRI_STEP.include_voice and not DUAL_STEP.include_voice


def test_search_stage_keeps_progress_and_context_apart():
    pipeline, text_client, _ = make_pipeline([DETAILS, SUMMARY, VOICE])

    events, run = run_pipeline(pipeline)

    streamed = "".join(event.text for event in events if event.kind is EventKind.FRAGMENT and event.step == 0)
    assert run.text(0) == streamed
    assert run.text(0).startswith("Searching the web for live company data...")
    assert "Found 2 verified sources!" in run.text(0)
    assert run.search_context.startswith("=== LIVE WEB SEARCH RESULTS ===")
    assert run.search_context not in run.text(0)
    assert run.search_context in text_client.prompts[0]
