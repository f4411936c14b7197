"""
CQL Instrumentation - Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit tests.
"""

import os
import sys
import types
from collections.abc import Callable, Generator, Iterable
from typing import Any

import pytest

from cql_instrumentation.config import InstrumentationSettings
from cql_instrumentation.instrumentation.interface import AgentInterface

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"


class RecordingAgent(AgentInterface):
    """Agent stub that records every collaborator call."""

    def __init__(self, tracing: bool = True, tracked: bool = True):
        self.tracing = tracing
        self.tracked = tracked
        self.scopes: list[set[str]] = []
        self.timings: list[float] = []
        self.slow_samples: list[dict[str, Any]] = []
        self.full_samples: list[dict[str, Any]] = []
        self.messages: list[str] = []

    def is_tracing_enabled(self) -> bool:
        return self.tracing

    def is_in_tracked_context(self) -> bool:
        return self.tracked

    def record_timed_scope(self, metric_names: Iterable[str], body: Callable[[], Any]) -> Any:
        self.scopes.append(set(metric_names))
        return body()

    def record_timing(self, metric_names: Iterable[str], elapsed: float) -> None:
        self.scopes.append(set(metric_names))
        self.timings.append(elapsed)

    def record_slow_sample(self, query, metadata, elapsed, context, explainer=None) -> None:  # type: ignore[no-untyped-def]
        self.slow_samples.append(
            {"query": query, "metadata": metadata, "elapsed": elapsed, "context": context, "explainer": explainer}
        )

    def record_full_sample(self, query, metric, metadata, elapsed, context, explainer=None) -> None:  # type: ignore[no-untyped-def]
        self.full_samples.append(
            {
                "query": query,
                "metric": metric,
                "metadata": metadata,
                "elapsed": elapsed,
                "context": context,
                "explainer": explainer,
            }
        )

    def log_info(self, message: str) -> None:
        self.messages.append(message)

    @property
    def recorded_anything(self) -> bool:
        return bool(self.scopes or self.slow_samples or self.full_samples)


@pytest.fixture
def agent() -> RecordingAgent:
    """Recording agent with tracing on, inside a tracked context."""
    return RecordingAgent()


@pytest.fixture
def settings() -> InstrumentationSettings:
    """Default settings with nothing disabled."""
    return InstrumentationSettings()


@pytest.fixture
def fake_cassandra(monkeypatch: pytest.MonkeyPatch) -> types.ModuleType:
    """
    Install a minimal stand-in for cassandra.cluster into sys.modules.

    Session.execute_async(query) returns a ResponseFuture completing with
    ("rows", query), or with RuntimeError("driver error") for "FAIL".
    Futures complete immediately unless Session.complete_immediately is
    False. Session.execute delegates to execute_async(...).result(), as the
    driver does.
    """

    class ResponseFuture:
        def __init__(self, query: Any) -> None:
            self.query = query
            self.done = False
            self._rows: Any = None
            self._error: BaseException | None = None
            self._listeners: list[tuple[Any, ...]] = []

        def add_callbacks(
            self,
            callback: Callable[..., Any],
            errback: Callable[..., Any],
            callback_args: tuple[Any, ...] = (),
            callback_kwargs: dict[str, Any] | None = None,
            errback_args: tuple[Any, ...] = (),
            errback_kwargs: dict[str, Any] | None = None,
        ) -> None:
            listener = (callback, callback_args, callback_kwargs or {}, errback, errback_args, errback_kwargs or {})
            if self.done:
                self._notify(listener)
            else:
                self._listeners.append(listener)

        def complete(self) -> None:
            if self.query == "FAIL":
                self._error = RuntimeError("driver error")
            else:
                self._rows = ("rows", self.query)
            self.done = True
            for listener in self._listeners:
                self._notify(listener)

        def result(self) -> Any:
            if not self.done:
                self.complete()
            if self._error is not None:
                raise self._error
            return self._rows

        def _notify(self, listener: tuple[Any, ...]) -> None:
            callback, callback_args, callback_kwargs, errback, errback_args, errback_kwargs = listener
            if self._error is not None:
                errback(self._error, *errback_args, **errback_kwargs)
            else:
                callback(self._rows, *callback_args, **callback_kwargs)

    class Session:
        complete_immediately = True

        def __init__(self) -> None:
            self.calls: list[tuple[str, Any]] = []

        def execute(self, query: Any, parameters: Any = None) -> Any:
            self.calls.append(("execute", query))
            return self.execute_async(query, parameters).result()

        def execute_async(self, query: Any, parameters: Any = None) -> Any:
            self.calls.append(("execute_async", query))
            future = ResponseFuture(query)
            if self.complete_immediately:
                future.complete()
            return future

    package = types.ModuleType("cassandra")
    cluster = types.ModuleType("cassandra.cluster")
    cluster.ResponseFuture = ResponseFuture  # type: ignore[attr-defined]
    cluster.Session = Session  # type: ignore[attr-defined]
    package.cluster = cluster  # type: ignore[attr-defined]

    monkeypatch.setitem(sys.modules, "cassandra", package)
    monkeypatch.setitem(sys.modules, "cassandra.cluster", cluster)
    return cluster


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset cached configuration and the global agent after each test."""
    yield
    from cql_instrumentation.config import reset_config
    from cql_instrumentation.observability import reset_agent

    reset_config()
    reset_agent()
