"""
CompanyAnalysis model.

One row per analysis run. The table name matches the existing deployment.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class CompanyAnalysis(Base):
    """Persisted result of a company analysis run."""

    __tablename__ = "company_analytc"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    number_of_employees: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    company_gstin: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    analysis: Mapped[str] = mapped_column(Text, nullable=False)
    company_details: Mapped[str] = mapped_column(Text, nullable=False)
    reviews: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sources: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())

    def to_summary(self) -> dict:
        return {
            'id': self.id,
            'uuid': self.uuid,
            'company_name': self.company_name,
            'number_of_employees': self.number_of_employees,
            'company_gstin': self.company_gstin,
            'model': self.model,
            'latency_ms': self.latency_ms,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def to_dict(self) -> dict:
        data = self.to_summary()
        data.update({
            'analysis': self.analysis,
            'company_details': self.company_details,
            'reviews': self.reviews,
            'sources': self.sources or [],
        })
        return data

    def __repr__(self):
        return f"<CompanyAnalysis {self.uuid} {self.company_name!r}>"
