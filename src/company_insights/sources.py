"""
Source formatting: turns settled search results into prompt text and
per-source metadata for persistence and display
"""

import json
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

from .search import SEARCH_CATEGORIES, SearchBundle, SearchResult

NO_LIVE_DATA = "No live data available from web search."
NO_DATA_MARKER = "No data found in this category."
NO_SOURCES = "No sources available"
EXCERPT_LIMIT = 300

PLATFORM_NAMES = {
    'linkedin.com': 'LinkedIn',
    'crunchbase.com': 'Crunchbase',
    'wikipedia.org': 'Wikipedia',
    'glassdoor.co.in': 'Glassdoor India',
    'glassdoor.com': 'Glassdoor',
    'ambitionbox.com': 'AmbitionBox',
    'indeed.com': 'Indeed',
    'economictimes.indiatimes.com': 'Economic Times',
    'tofler.in': 'Tofler',
    'zaubacorp.com': 'Zaubacorp',
    'mca.gov.in': 'Ministry of Corporate Affairs (MCA)',
    'reuters.com': 'Reuters',
    'bloomberg.com': 'Bloomberg',
    'moneycontrol.com': 'MoneyControl',
}


def extract_domain(url: str) -> str:
    """Hostname without a leading www., or the input unchanged if it is not a URL"""
    hostname = urlparse(url).hostname if url else None
    if not hostname:
        return url
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def platform_name(domain: str) -> str:
    """Friendly platform name for a domain"""
    lower_domain = domain.lower()
    for known_domain, name in PLATFORM_NAMES.items():
        if known_domain in lower_domain:
            return name

    first_label = domain.split('.')[0]
    return first_label[:1].upper() + first_label[1:]


def _relevance(result: SearchResult, template: str) -> str:
    if not result.score:
        return ""
    return template.format(round(result.score * 100))


def format_search_results(bundle: Optional[SearchBundle]) -> str:
    """Render every category, in fixed order, as one block of text for prompt injection"""
    if bundle is None:
        return NO_LIVE_DATA

    formatted = "=== LIVE WEB SEARCH RESULTS ===\n\n"
    formatted += f"Company Searched: {bundle.company_name}\n"
    formatted += f"Search Timestamp: {bundle.timestamp}\n\n"

    for category in SEARCH_CATEGORIES:
        search_data = bundle.category(category.key)
        section = f"{category.icon} {category.title}\n\n"

        if search_data and search_data.answer:
            section += f"AI Summary:\n{search_data.answer}\n\n"

        if search_data and search_data.results:
            section += f"{len(search_data.results)} Source(s) Found:\n\n"
            for idx, result in enumerate(search_data.results, 1):
                platform = platform_name(extract_domain(result.url))
                section += f"  {idx}. {platform}{_relevance(result, ' (Relevance: {}%)')}\n"
                section += f"     Title: {result.title}\n"
                section += f"     URL: {result.url}\n"
                section += f"     Excerpt: {(result.content or '')[:EXCERPT_LIMIT]}...\n"
                if result.published_date:
                    section += f"     Published: {result.published_date}\n"
                section += "\n"
        else:
            section += f"{NO_DATA_MARKER}\n\n"

        section += "─" * 80 + "\n\n"
        formatted += section

    formatted += "\n=== END OF SEARCH RESULTS ===\n"
    return formatted


@dataclass
class SourcesMetadata:
    """Flattened sources across categories, plus display renderings"""
    sources: List[dict] = field(default_factory=list)
    display: str = NO_SOURCES
    listing: str = NO_SOURCES
    timestamp: Optional[str] = None

    @property
    def total_sources(self) -> int:
        return len(self.sources)

    def to_json(self) -> str:
        return json.dumps(self.sources, ensure_ascii=False, indent=2)

    def to_dict(self) -> dict:
        return {
            'sources': self.sources,
            'sourcesList': self.listing,
            'sourcesDisplay': self.display,
            'totalSources': self.total_sources,
            'timestamp': self.timestamp,
        }


def extract_sources_metadata(bundle: Optional[SearchBundle]) -> SourcesMetadata:
    """Category-major, rank-major list of sources with platform attribution"""
    if bundle is None:
        return SourcesMetadata()

    all_sources = []
    display = "DATA SOURCES\n\n"
    display += "All information below was gathered from the following sources:\n\n"
    display += "═" * 80 + "\n\n"
    listing = "Data Sources:\n\n"

    for category in SEARCH_CATEGORIES:
        search_data = bundle.category(category.key)
        results = search_data.results if search_data else []
        if not results:
            continue

        plural = "s" if len(results) > 1 else ""
        display += f"{category.icon} {category.label} ({len(results)} source{plural}):\n\n"
        listing += f"{category.label}:\n"

        for idx, result in enumerate(results, 1):
            domain = extract_domain(result.url)
            platform = platform_name(domain)
            all_sources.append({
                'category': category.label,
                'platform': platform,
                'domain': domain,
                'url': result.url,
                'title': result.title,
                'score': result.score or 0,
                'published_date': result.published_date,
            })

            display += f"  {idx}. {platform}{_relevance(result, ' - Relevance: {}%')}\n"
            display += f"     {result.title}\n"
            display += f"     {result.url}\n\n"
            listing += f"  {idx}. {platform} - {result.title}\n"
            listing += f"     {result.url}\n"

        display += "\n"
        listing += "\n"

    display += "═" * 80 + "\n"
    display += f"Total Sources: {len(all_sources)}\n"
    display += f"Search Timestamp: {bundle.timestamp}\n"

    return SourcesMetadata(
        sources=all_sources,
        display=display,
        listing=listing,
        timestamp=bundle.timestamp,
    )


def group_sources_by_category(sources: List[dict]) -> dict:
    """Stored sources keyed by category label, preserving order"""
    grouped = {}
    for source in sources or []:
        grouped.setdefault(source.get('category'), []).append({
            'platform': source.get('platform'),
            'title': source.get('title'),
            'url': source.get('url'),
            'domain': source.get('domain'),
            'score': source.get('score'),
            'published_date': source.get('published_date'),
        })
    return grouped
