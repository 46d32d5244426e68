#!/usr/bin/env python3
"""
Command line entry point: serve the API, run one analysis in the terminal,
or expose the analysis tools over MCP (stdio).
"""

import argparse
import asyncio
import json
import logging

import uvicorn

from company_insights.common import AnalysisRequest
from company_insights.config import Settings
from company_insights.db import create_engine, create_session_factory, create_tables
from company_insights.mcp_tools import AnalysisToolHandler, build_mcp_server
from company_insights.pipeline import DUAL_STEP, TRI_STEP, build_pipelines
from company_insights.repository import AnalysisRepository
from company_insights.streaming import AnalysisStreamSession

logger = logging.getLogger(__name__)


def render_frame(frame: str) -> None:
    """Print one SSE frame the way a terminal user wants to read it"""
    payload = json.loads(frame[len("data: "):])

    if "text" in payload:
        print(payload["text"], end="", flush=True)
    elif "transition" in payload:
        print(f"\n\n>>> {payload['transition']}\n")
    elif "stepComplete" in payload:
        print(f"\n[{payload['stepComplete']}]")
    elif payload.get("notFound"):
        print(f"\nNOT FOUND: {payload['message']}")
    elif payload.get("done"):
        print(f"\nDone ({payload['status']}). Analysis UUID: {payload['analysisUuid']}")
    elif "error" in payload:
        print(f"\nERROR: {payload['error']}")


async def analyze(args, settings: Settings):
    pipelines = build_pipelines(settings)
    pipeline = pipelines[DUAL_STEP.name if args.dual else TRI_STEP.name]

    engine = None
    store = None
    if args.save:
        engine = create_engine(settings)
        if settings.db_create_tables:
            await create_tables(engine)
        store = AnalysisRepository(create_session_factory(engine))

    request = AnalysisRequest(
        company_name=args.company,
        number_of_employees=args.employees,
        company_gstin=args.gstin,
        model=args.model,
    )
    print(f"Analyzing: {request.company_name} ({pipeline.variant.name}, {pipeline.model_for(request)})")

    try:
        async for frame in AnalysisStreamSession(pipeline, store, request).frames():
            render_frame(frame)
    finally:
        if engine is not None:
            await engine.dispose()


def serve(args, settings: Settings):
    print(f"Starting Company Analysis API on http://{settings.host}:{settings.port}")
    print("SSE endpoints: /tri-step-analysis-stream and /dual-step-analysis-stream")
    print(f"API docs: http://localhost:{settings.port}/docs")

    uvicorn.run(
        "company_insights.api:app",
        host=settings.host,
        port=settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


async def prepare_tables(engine) -> None:
    """Create the tables, then drop the pooled connections bound to this short-lived loop"""
    await create_tables(engine)
    await engine.dispose()


def run_mcp(args, settings: Settings):
    store = None
    if args.save:
        engine = create_engine(settings)
        if settings.db_create_tables:
            asyncio.run(prepare_tables(engine))
        store = AnalysisRepository(create_session_factory(engine))
    handler = AnalysisToolHandler(build_pipelines(settings), store)
    build_mcp_server(handler).run()


def main():
    parser = argparse.ArgumentParser(description='Streaming company analysis with live web search')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve_parser = subparsers.add_parser('serve', help='Run the HTTP API')
    serve_parser.add_argument('--reload', action='store_true', help='Reload on code changes')

    analyze_parser = subparsers.add_parser('analyze', help='Analyze one company in the terminal')
    analyze_parser.add_argument('company', type=str, help='Company name to analyze')
    analyze_parser.add_argument('--dual', action='store_true',
                                help='Dual-step research and strategic analysis (no web search)')
    analyze_parser.add_argument('--model', type=str, default=None, help='Model override')
    analyze_parser.add_argument('--employees', type=str, default=None, help='Reported employee count')
    analyze_parser.add_argument('--gstin', type=str, default=None, help='Company GSTIN')
    analyze_parser.add_argument('--save', action='store_true', help='Save the result to the database')

    mcp_parser = subparsers.add_parser('mcp', help='Run the MCP server over stdio')
    mcp_parser.add_argument('--save', action='store_true', help='Save tool results to the database')

    args = parser.parse_args()
    settings = Settings()

    # MCP stdio owns stdout, keep logs on stderr only
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    if args.command == 'serve':
        serve(args, settings)
    elif args.command == 'analyze':
        asyncio.run(analyze(args, settings))
    elif args.command == 'mcp':
        run_mcp(args, settings)


if __name__ == "__main__":
    main()
