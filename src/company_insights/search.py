"""
Live web search for a company: four topic-scoped Tavily searches run in parallel
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel
from tavily import AsyncTavilyClient

logger = logging.getLogger(__name__)


class SearchResult(BaseModel):
    """One ranked search hit"""
    title: str = ""
    url: str
    content: str = ""
    score: Optional[float] = None
    published_date: Optional[str] = None


class SearchResultSet(BaseModel):
    """Results of one search query, with the provider's optional AI summary"""
    answer: Optional[str] = None
    results: List[SearchResult] = []


@dataclass(frozen=True)
class SearchCategory:
    key: str
    label: str
    title: str
    icon: str
    query: str
    max_results: int
    depth: str

    def query_for(self, company_name: str) -> str:
        return self.query.format(company=company_name)


SEARCH_CATEGORIES = (
    SearchCategory(
        key="basic_info",
        label="Company Overview & Basic Information",
        title="COMPANY OVERVIEW & BASIC INFORMATION",
        icon="🔍",
        query="{company} company information headquarters website",
        max_results=5,
        depth="advanced",
    ),
    SearchCategory(
        key="financial_info",
        label="Financial Information",
        title="FINANCIAL INFORMATION",
        icon="💰",
        query="{company} revenue profit employees annual report financial",
        max_results=5,
        depth="advanced",
    ),
    SearchCategory(
        key="employee_reviews",
        label="Employee Reviews & Feedback",
        title="EMPLOYEE REVIEWS & FEEDBACK",
        icon="⭐",
        query="{company} employee reviews complaints feedback rating",
        max_results=5,
        depth="basic",
    ),
    SearchCategory(
        key="india_info",
        label="Indian Company Registration",
        title="INDIAN COMPANY REGISTRATION DATA",
        icon="🇮🇳",
        query="{company} India MCA company registration details",
        max_results=3,
        depth="basic",
    ),
)


@dataclass
class SearchBundle:
    """Settled results of all category searches. A failed search maps to None."""

    company_name: str
    timestamp: str
    results: Dict[str, Optional[SearchResultSet]]

    def category(self, key: str) -> Optional[SearchResultSet]:
        return self.results.get(key)

    @property
    def total_results(self) -> int:
        return sum(len(result_set.results) for result_set in self.results.values() if result_set)


class WebSearchClient:
    """Runs the category searches for a company and joins them best-effort."""

    def __init__(self, api_key: Optional[str] = None, client=None, timeout: Optional[float] = None,
                 categories=SEARCH_CATEGORIES):
        self.client = client or AsyncTavilyClient(api_key=api_key)
        self.timeout = timeout
        self.categories = tuple(categories)

    async def _search(self, category: SearchCategory, company_name: str) -> SearchResultSet:
        request = self.client.search(
            category.query_for(company_name),
            search_depth=category.depth,
            max_results=category.max_results,
            include_answer=True,
        )
        if self.timeout:
            response = await asyncio.wait_for(request, self.timeout)
        else:
            response = await request
        return SearchResultSet(
            answer=response.get("answer"),
            results=response.get("results") or [],
        )

    async def search_company(self, company_name: str) -> Optional[SearchBundle]:
        """Search every category concurrently. Returns None when nothing at all was found."""
        clean_name = company_name.strip()
        logger.info(f"Searching web for: {clean_name}")

        outcomes = await asyncio.gather(
            *(self._search(category, clean_name) for category in self.categories),
            return_exceptions=True,
        )

        results = {}
        for category, outcome in zip(self.categories, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Search '{category.key}' failed for {clean_name}: {outcome!r}")
                results[category.key] = None
            else:
                results[category.key] = outcome

        bundle = SearchBundle(
            company_name=clean_name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            results=results,
        )

        if bundle.total_results == 0:
            logger.warning(f"No search results found for: {clean_name}")
            return None

        logger.info(f"Found {bundle.total_results} sources for: {clean_name}")
        return bundle
