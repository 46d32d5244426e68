"""
Analysis repository - database operations for CompanyAnalysis.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .common import AnalysisRecord
from .errors import PersistenceError
from .models import CompanyAnalysis

logger = logging.getLogger(__name__)


class AnalysisRepository:
    """Result store. Each call takes its own session from the pool and releases it."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, record: AnalysisRecord) -> CompanyAnalysis:
        row = CompanyAnalysis(
            uuid=record.uuid,
            company_name=record.company_name,
            number_of_employees=record.number_of_employees,
            company_gstin=record.company_gstin,
            model=record.model,
            latency_ms=record.latency_ms,
            analysis=record.analysis,
            company_details=record.company_details,
            reviews=record.reviews,
            sources=record.sources,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not save analysis {record.uuid}: {e}") from e
        return row

    async def get_by_uuid(self, analysis_uuid: str) -> Optional[CompanyAnalysis]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(CompanyAnalysis).where(CompanyAnalysis.uuid == analysis_uuid)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not load analysis {analysis_uuid}: {e}") from e

    async def list_page(self, page: int = 1, limit: int = 10) -> Tuple[List[CompanyAnalysis], int]:
        """Newest first. Returns the page rows and the total row count."""
        page = max(1, page)
        limit = max(1, limit)
        try:
            async with self.session_factory() as session:
                total = await session.scalar(select(func.count()).select_from(CompanyAnalysis))
                result = await session.execute(
                    select(CompanyAnalysis)
                    .order_by(CompanyAnalysis.created_at.desc(), CompanyAnalysis.id.desc())
                    .limit(limit)
                    .offset((page - 1) * limit)
                )
                return list(result.scalars().all()), total or 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not list analyses: {e}") from e

    async def delete_by_uuid(self, analysis_uuid: str) -> bool:
        """Returns False when no row matched."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(CompanyAnalysis).where(CompanyAnalysis.uuid == analysis_uuid)
                    )
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not delete analysis {analysis_uuid}: {e}") from e

        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Deleted analysis {analysis_uuid}")
        return deleted
