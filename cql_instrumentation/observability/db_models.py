"""
CQL Instrumentation - Harvest Database Models

SQLAlchemy models for harvested metric timeslices and slow samples.
"""

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

if TYPE_CHECKING:
    from .agent import MetricStats, SlowSample


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all database models."""

    pass


class MetricRecord(Base):
    """
    One harvested timeslice of a metric.

    Holds the aggregate of every call attributed to the metric name
    between two harvests.
    """

    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    call_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_time: Mapped[float] = mapped_column(Float, nullable=False)
    min_time: Mapped[float] = mapped_column(Float, nullable=False)
    max_time: Mapped[float] = mapped_column(Float, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False, index=True, default=lambda: datetime.now(UTC))

    __table_args__ = (Index("idx_metric_name_timestamp", "name", "timestamp"),)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "call_count": self.call_count,
            "total_time": self.total_time,
            "min_time": self.min_time,
            "max_time": self.max_time,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_stats(cls, name: str, stats: "MetricStats", timestamp: float) -> "MetricRecord":
        """Create a MetricRecord from in-memory stats."""
        return cls(
            name=name,
            call_count=stats.call_count,
            total_time=stats.total_time,
            min_time=stats.min_time,
            max_time=stats.max_time,
            timestamp=datetime.fromtimestamp(timestamp, UTC),
        )


class SlowSampleRecord(Base):
    """A harvested slow call with its statement text."""

    __tablename__ = "slow_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    elapsed: Mapped[float] = mapped_column(Float, nullable=False)
    transaction: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attributes: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON string
    timestamp: Mapped[datetime] = mapped_column(nullable=False, index=True, default=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "query": self.query,
            "elapsed": self.elapsed,
            "transaction": self.transaction,
            "attributes": json.loads(self.attributes) if self.attributes else {},
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_sample(cls, sample: "SlowSample", timestamp: float) -> "SlowSampleRecord":
        """Create a SlowSampleRecord from an in-memory slow sample."""
        attributes = {**sample.metadata}
        if sample.explain_plan is not None:
            attributes["explain_plan"] = str(sample.explain_plan)
        return cls(
            query=sample.query,
            elapsed=sample.elapsed,
            transaction=sample.transaction,
            attributes=json.dumps(attributes, default=str),
            timestamp=datetime.fromtimestamp(timestamp, UTC),
        )
