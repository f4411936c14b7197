"""
CQL Instrumentation - Reference Agent

In-process implementation of AgentInterface.

Keeps per-metric timing aggregates, slow samples and per-statement
aggregates in memory, and harvests them to SQLite on demand. Tracing and
transaction state live in context variables, so threads and asyncio tasks
each see their own state.
"""

import contextvars
import json
import logging
import threading
import time
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select

from ..instrumentation.interface import AgentInterface, Explainer
from .database import MetricsDatabase
from .db_models import MetricRecord, SlowSampleRecord

_transaction_ctx: contextvars.ContextVar["Transaction | None"] = contextvars.ContextVar("transaction", default=None)

_suppressed_ctx: contextvars.ContextVar[bool] = contextvars.ContextVar("tracing_suppressed", default=False)


@dataclass(frozen=True)
class Transaction:
    """A unit of work; web transactions are the tracked (foreground) kind."""

    name: str
    web: bool = True
    started_at: float = field(default_factory=time.time)


@dataclass
class MetricStats:
    """Timing aggregate of one metric name."""

    call_count: int = 0
    total_time: float = 0.0
    min_time: float = 0.0
    max_time: float = 0.0

    def record(self, elapsed: float) -> None:
        if self.call_count == 0 or elapsed < self.min_time:
            self.min_time = elapsed
        self.max_time = max(self.max_time, elapsed)
        self.total_time += elapsed
        self.call_count += 1

    def merge(self, other: "MetricStats") -> None:
        """Fold another aggregate of the same metric into this one."""
        if other.call_count == 0:
            return
        if self.call_count == 0 or other.min_time < self.min_time:
            self.min_time = other.min_time
        self.max_time = max(self.max_time, other.max_time)
        self.total_time += other.total_time
        self.call_count += other.call_count


@dataclass
class SlowSample:
    """A single call slower than the configured threshold."""

    query: str
    metadata: dict[str, Any]
    elapsed: float
    context: Any
    transaction: str | None = None
    explain_plan: Any = None


@dataclass
class FullSample:
    """All calls of one statement under one metric."""

    metric: str
    query: str
    stats: MetricStats = field(default_factory=MetricStats)
    metadata: dict[str, Any] = field(default_factory=dict)
    last_context: Any = None
    explain_plan: Any = None


class LocalAgent(AgentInterface):
    """
    Reference monitoring agent with SQLite persistence.

    Provides:
    - Scoped timings per metric name
    - Slow sample and full sample recorders
    - Web/background transaction tracking
    - Structured JSON logging
    """

    def __init__(
        self,
        enable_tracing: bool = True,
        slow_sample_threshold: float = 0.5,
        max_slow_samples: int = 20,
        max_full_samples: int = 100,
        metrics_db_path: str = "./data/metrics.db",
        log_level: str = "INFO",
    ):
        """
        Initialize the agent.

        Args:
            enable_tracing: Record timings and samples
            slow_sample_threshold: Minimum elapsed seconds for a slow sample
            max_slow_samples: Slowest samples retained between harvests
            max_full_samples: Distinct (metric, query) aggregates retained
            metrics_db_path: Path to SQLite database for harvests
            log_level: Level of the package logger
        """
        self.enable_tracing = enable_tracing
        self.slow_sample_threshold = slow_sample_threshold
        self.max_slow_samples = max_slow_samples
        self.max_full_samples = max_full_samples

        self._lock = threading.Lock()
        self._metrics: dict[str, MetricStats] = {}
        self._slow_samples: list[SlowSample] = []
        self._full_samples: dict[tuple[str, str], FullSample] = {}

        self._db = MetricsDatabase(db_path=metrics_db_path)

        self.logger = self._setup_logger(log_level)

    def _setup_logger(self, log_level: str) -> logging.Logger:
        """Setup structured JSON logger for the package."""
        logger = logging.getLogger("cql_instrumentation")

        logger.handlers.clear()

        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(log_level)

        return logger

    # Execution context

    def is_tracing_enabled(self) -> bool:
        return self.enable_tracing and not _suppressed_ctx.get()

    def is_in_tracked_context(self) -> bool:
        transaction = _transaction_ctx.get()
        return transaction is not None and transaction.web

    def current_transaction(self) -> Transaction | None:
        """Get the active transaction from context."""
        return _transaction_ctx.get()

    @contextmanager
    def transaction(self, name: str, web: bool = True) -> Generator[Transaction, None, None]:
        """
        Context manager marking a unit of work.

        Args:
            name: Transaction name
            web: True for foreground (tracked) work, False for background jobs

        Example:
            with agent.transaction("GET /users"):
                session.execute("SELECT * FROM users")
        """
        transaction = Transaction(name=name, web=web)
        token = _transaction_ctx.set(transaction)
        start_time = time.perf_counter()
        try:
            yield transaction
        finally:
            _transaction_ctx.reset(token)
            self.logger.debug(
                f"Transaction completed: {name}",
                extra={
                    "transaction_name": name,
                    "web": web,
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                },
            )

    @contextmanager
    def suppress_tracing(self) -> Generator[None, None, None]:
        """Context manager turning tracing off for the enclosed block."""
        token = _suppressed_ctx.set(True)
        try:
            yield
        finally:
            _suppressed_ctx.reset(token)

    # Recorders

    def record_timed_scope(self, metric_names: Iterable[str], body: Callable[[], Any]) -> Any:
        names = tuple(metric_names)
        start_time = time.perf_counter()
        try:
            return body()
        finally:
            self.record_timing(names, time.perf_counter() - start_time)

    def record_timing(self, metric_names: Iterable[str], elapsed: float) -> None:
        with self._lock:
            for name in metric_names:
                self._metrics.setdefault(name, MetricStats()).record(elapsed)

    def record_slow_sample(
        self,
        query: str,
        metadata: dict[str, Any],
        elapsed: float,
        context: Any,
        explainer: Explainer | None = None,
    ) -> None:
        if elapsed < self.slow_sample_threshold:
            return

        transaction = _transaction_ctx.get()
        sample = SlowSample(
            query=query,
            metadata=dict(metadata),
            elapsed=elapsed,
            context=context,
            transaction=transaction.name if transaction else None,
            explain_plan=self._explain(explainer, query),
        )

        with self._lock:
            self._slow_samples.append(sample)
            self._slow_samples.sort(key=lambda s: s.elapsed, reverse=True)
            del self._slow_samples[self.max_slow_samples :]

    def record_full_sample(
        self,
        query: str,
        metric: str,
        metadata: dict[str, Any],
        elapsed: float,
        context: Any,
        explainer: Explainer | None = None,
    ) -> None:
        key = (metric, query)
        with self._lock:
            sample = self._full_samples.get(key)
            if sample is None:
                if len(self._full_samples) >= self.max_full_samples:
                    self.logger.debug("Full sample limit reached, dropping statement", extra={"metric": metric})
                    return
                sample = FullSample(metric=metric, query=query, metadata=dict(metadata))
                self._full_samples[key] = sample
                needs_plan = explainer is not None
            else:
                needs_plan = False

            sample.stats.record(elapsed)
            sample.last_context = context

        if needs_plan:
            sample.explain_plan = self._explain(explainer, query)

    def log_info(self, message: str) -> None:
        self.logger.info(message, extra={"component": "agent"})

    def _explain(self, explainer: Explainer | None, query: str) -> Any:
        if explainer is None:
            return None
        try:
            return explainer(self, query)
        except Exception as e:
            self.logger.error(f"Explain plan failed: {e}", extra={"query": query})
            return None

    # Snapshots

    def metrics(self) -> dict[str, MetricStats]:
        """Copy of the current per-metric aggregates."""
        with self._lock:
            return {name: MetricStats(**vars(stats)) for name, stats in self._metrics.items()}

    def slow_samples(self) -> list[SlowSample]:
        """Slow samples, slowest first."""
        with self._lock:
            return list(self._slow_samples)

    def full_samples(self) -> list[FullSample]:
        """Per-statement aggregates."""
        with self._lock:
            return list(self._full_samples.values())

    def reset(self) -> None:
        """Drop all in-memory aggregates (testing/reset)."""
        with self._lock:
            self._metrics = {}
            self._slow_samples = []
            self._full_samples = {}

    # Harvest

    async def harvest(self) -> int:
        """
        Persist the current aggregates to SQLite and start a new timeslice.

        If the write fails, the taken aggregates are merged back into the
        live ones so the next harvest persists them.

        Returns:
            Number of metric rows written
        """
        with self._lock:
            metrics, self._metrics = self._metrics, {}
            slow_samples, self._slow_samples = self._slow_samples, []
            full_samples, self._full_samples = self._full_samples, {}

        timestamp = time.time()
        try:
            async with self._db.get_session() as session:
                session.add_all([MetricRecord.from_stats(name, stats, timestamp) for name, stats in metrics.items()])
                session.add_all([SlowSampleRecord.from_sample(sample, timestamp) for sample in slow_samples])
                await session.commit()
        except BaseException as e:
            self._restore(metrics, slow_samples, full_samples)
            self.logger.error(
                f"Harvest failed, timeslice kept for the next harvest: {e}",
                extra={"metric_count": len(metrics), "slow_sample_count": len(slow_samples)},
                exc_info=True,
            )
            raise

        self.logger.debug(
            "Harvest completed",
            extra={"metric_count": len(metrics), "slow_sample_count": len(slow_samples)},
        )
        return len(metrics)

    def _restore(
        self,
        metrics: dict[str, MetricStats],
        slow_samples: list[SlowSample],
        full_samples: dict[tuple[str, str], FullSample],
    ) -> None:
        """Merge an unharvested timeslice back into the live aggregates."""
        with self._lock:
            for name, stats in metrics.items():
                self._metrics.setdefault(name, MetricStats()).merge(stats)

            self._slow_samples.extend(slow_samples)
            self._slow_samples.sort(key=lambda s: s.elapsed, reverse=True)
            del self._slow_samples[self.max_slow_samples :]

            for key, sample in full_samples.items():
                current = self._full_samples.get(key)
                if current is None:
                    self._full_samples[key] = sample
                else:
                    current.stats.merge(sample.stats)

    async def get_harvested(
        self,
        metric_name: str | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """
        Get harvested metric rows from the database.

        Args:
            metric_name: Optional filter by metric name
            limit: Maximum number of records to return

        Returns:
            List of metric records as dictionaries, newest first
        """
        async with self._db.get_session() as session:
            query = select(MetricRecord).order_by(MetricRecord.timestamp.desc()).limit(limit)

            if metric_name:
                query = query.where(MetricRecord.name == metric_name)

            result = await session.execute(query)
            return [record.to_dict() for record in result.scalars().all()]

    async def get_harvested_slow_samples(self, limit: int = 100) -> list[dict[str, Any]]:
        """Get harvested slow samples, slowest first."""
        async with self._db.get_session() as session:
            query = select(SlowSampleRecord).order_by(SlowSampleRecord.elapsed.desc()).limit(limit)
            result = await session.execute(query)
            return [record.to_dict() for record in result.scalars().all()]

    async def close(self) -> None:
        """Close database connections gracefully."""
        await self._db.close()


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    _RESERVED = frozenset(
        (
            "args",
            "msg",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
            "name",
            "message",
        )
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        transaction = _transaction_ctx.get()
        if transaction is not None:
            log_data["transaction"] = transaction.name

        for key, value in record.__dict__.items():
            if key not in log_data and not key.startswith("_") and key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


# Global agent instance (singleton)
_agent: LocalAgent | None = None


def get_agent() -> LocalAgent:
    """
    Get the global reference agent, creating it from configuration on first use.

    Returns:
        Global LocalAgent instance
    """
    global _agent

    if _agent is None:
        from ..config import get_config

        config = get_config()
        _agent = LocalAgent(
            enable_tracing=config.agent.enable_tracing,
            slow_sample_threshold=config.agent.slow_sample_threshold,
            max_slow_samples=config.agent.max_slow_samples,
            max_full_samples=config.agent.max_full_samples,
            metrics_db_path=config.agent.metrics_db_path,
            log_level=config.log_level,
        )

    return _agent


def initialize_agent(
    enable_tracing: bool = True,
    slow_sample_threshold: float = 0.5,
    max_slow_samples: int = 20,
    max_full_samples: int = 100,
    metrics_db_path: str = "./data/metrics.db",
    log_level: str = "INFO",
) -> LocalAgent:
    """
    Initialize the global reference agent.

    Returns:
        Initialized LocalAgent instance
    """
    global _agent

    _agent = LocalAgent(
        enable_tracing=enable_tracing,
        slow_sample_threshold=slow_sample_threshold,
        max_slow_samples=max_slow_samples,
        max_full_samples=max_full_samples,
        metrics_db_path=metrics_db_path,
        log_level=log_level,
    )

    return _agent


def reset_agent() -> None:
    """Drop the global agent (testing/reset)."""
    global _agent
    _agent = None
