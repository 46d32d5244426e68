"""
Pytest configuration and shared fixtures.
"""

import pytest

from company_insights.config import Settings


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests, no external deps")
    config.addinivalue_line("markers", "db: runs against a temporary SQLite database")


@pytest.fixture
def sqlite_settings(tmp_path):
    """Settings pointing at a throwaway SQLite file, with no provider keys"""
    return Settings(
        openai_api_key=None,
        anthropic_api_key=None,
        tavily_api_key=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}",
        db_create_tables=True,
    )
