"""
CQL Instrumentation - Instrumented Call Wrappers

Wrap a database client call, time it, and report it to the monitoring agent.

The wrapped call's outcome is authoritative: its return value is returned
and its exception is raised unchanged. Classification, naming and
reporting failures are logged and never reach the caller.

Usage:
    execute = InstrumentedCall(session.execute, agent, query_argument=0)
    rows = execute("SELECT * FROM users")
"""

import contextvars
import functools
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..config.schemas import InstrumentationSettings
from .classifier import Operation, classify, statement_text
from .interface import AgentInterface
from .metrics import metric_names, primary_metric, statement_metric

logger = logging.getLogger(__name__)

CQL_EXPLAIN_MESSAGE = "No explain plans support for CQL currently"

# Set while a request-level call runs its original; nested async submissions skip recording
_request_active: contextvars.ContextVar[bool] = contextvars.ContextVar("cql_request_active", default=False)


def cql_explainer(config: Any, query: str) -> str:
    """Explain-plan callback handed to the sample recorders."""
    return CQL_EXPLAIN_MESSAGE


@dataclass(frozen=True)
class TraceContext:
    """Per-call context forwarded to the sample recorders."""

    operation: Operation
    in_tracked_context: bool
    statement_name: str | None = None
    started_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class _CallPlan:
    query: str
    primary: str
    metrics: frozenset[str]
    context: TraceContext | None


class _CallOutcome:
    """Captures what the delegated call did so it can be replayed to the caller."""

    __slots__ = ("started", "result", "error")

    def __init__(self) -> None:
        self.started = False
        self.result: Any = None
        self.error: BaseException | None = None

    def replay(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.result


class InstrumentedCall:
    """
    Instrumentation for a request-level CQL call.

    Each call is reported under "Database/CQL/<operation>" plus the datastore
    rollups, and offered to the slow-sample and full-sample recorders.

    The original callable is injected explicitly, so the wrapper can be used
    standalone or installed onto a class attribute through wrapt_wrapper().
    """

    marks_request = True

    def __init__(
        self,
        original: Callable[..., Any],
        agent: AgentInterface,
        *,
        settings: InstrumentationSettings | None = None,
        library: str = "cassandra",
        query_argument: int = 1,
    ):
        """
        Initialize the wrapper.

        Args:
            original: Callable performing the real work
            agent: Monitoring agent receiving timings and samples
            settings: Configuration consulted on every call (None = never disabled)
            library: Library key for disable_<library>_instrumentation
            query_argument: Positional index of the query argument
        """
        self._original = original
        self._agent = agent
        self._settings = settings
        self.library = library
        self.query_argument = query_argument
        functools.update_wrapper(self, original, updated=())

    @property
    def original(self) -> Callable[..., Any]:
        return self._original

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.invoke(self._original, args, kwargs)

    def wrapt_wrapper(
        self,
        wrapped: Callable[..., Any],
        instance: Any,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        """Entry point for wrapt.wrap_function_wrapper(); wrapped is already bound."""
        return self.invoke(wrapped, args, kwargs)

    def invoke(self, original: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        """
        Run original with instrumentation around it.

        Args:
            original: Callable to delegate to
            args: Positional arguments for original
            kwargs: Keyword arguments for original

        Returns:
            Whatever original returns; exceptions from original propagate unchanged
        """
        if not self._should_record():
            return original(*args, **kwargs)

        try:
            plan = self._plan(args, kwargs)
        except Exception as e:
            logger.debug(
                f"Skipping instrumentation, could not name call: {e}",
                extra={"library": self.library, "error": str(e)},
            )
            return original(*args, **kwargs)

        outcome = _CallOutcome()

        def body() -> Any:
            if outcome.started:
                return outcome.replay()
            outcome.started = True
            token = _request_active.set(True) if self.marks_request else None
            start = time.perf_counter()
            try:
                outcome.result = original(*args, **kwargs)
                return outcome.result
            except BaseException as e:
                outcome.error = e
                raise
            finally:
                elapsed = time.perf_counter() - start
                if token is not None:
                    _request_active.reset(token)
                self._report(plan, elapsed)

        try:
            self._agent.record_timed_scope(plan.metrics, body)
        except Exception as e:
            if e is not outcome.error:
                logger.warning(
                    f"Timed scope recorder failed: {e}",
                    extra={"library": self.library, "metrics": sorted(plan.metrics)},
                    exc_info=True,
                )

        if not outcome.started:
            return body()
        return outcome.replay()

    def _should_record(self) -> bool:
        if self._settings is not None and self._settings.instrumentation.is_disabled(self.library):
            return False
        try:
            return bool(self._agent.is_tracing_enabled())
        except Exception as e:
            logger.warning(
                f"Could not read tracing state, not recording: {e}",
                extra={"library": self.library},
                exc_info=True,
            )
            return False

    def _query_from(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        if len(args) > self.query_argument:
            return args[self.query_argument]
        return kwargs.get("query")

    def _statement_name(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> str | None:
        index = self.query_argument - 1
        name = args[index] if 0 <= index < len(args) else kwargs.get("name")
        return name if isinstance(name, str) else None

    def _plan(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> _CallPlan:
        query = statement_text(self._query_from(args, kwargs))
        operation = classify(query)
        in_tracked_context = bool(self._agent.is_in_tracked_context())
        return _CallPlan(
            query=query,
            primary=primary_metric(operation),
            metrics=metric_names(operation, in_tracked_context),
            context=TraceContext(
                operation=operation,
                in_tracked_context=in_tracked_context,
                statement_name=self._statement_name(args, kwargs),
            ),
        )

    def _report(self, plan: _CallPlan, elapsed: float) -> None:
        try:
            self._agent.record_slow_sample(plan.query, {}, elapsed, plan.context, explainer=cql_explainer)
        except Exception as e:
            logger.warning(
                f"Slow sample recorder failed: {e}",
                extra={"library": self.library, "metric": plan.primary},
                exc_info=True,
            )

        try:
            self._agent.record_full_sample(
                plan.query, plan.primary, {}, elapsed, plan.context, explainer=cql_explainer
            )
        except Exception as e:
            logger.warning(
                f"Full sample recorder failed: {e}",
                extra={"library": self.library, "metric": plan.primary},
                exc_info=True,
            )


class StatementTracer(InstrumentedCall):
    """
    Lightweight tracer for statement execution.

    Records only a scoped timing under "Database/Cassandra/<STATEMENT PREFIX>";
    no samples are taken.
    """

    marks_request = False

    def __init__(
        self,
        original: Callable[..., Any],
        agent: AgentInterface,
        *,
        settings: InstrumentationSettings | None = None,
        library: str = "cassandra",
        query_argument: int = 0,
    ):
        super().__init__(
            original,
            agent,
            settings=settings,
            library=library,
            query_argument=query_argument,
        )

    def _plan(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> _CallPlan:
        query = statement_text(self._query_from(args, kwargs))
        metric = statement_metric(query)
        return _CallPlan(query=query, primary=metric, metrics=frozenset((metric,)), context=None)

    def _report(self, plan: _CallPlan, elapsed: float) -> None:
        pass


class _PendingCall:
    """Completion state of one asynchronous call; finishes at most once."""

    __slots__ = ("plan", "context", "started", "_lock", "_finished")

    def __init__(self, plan: _CallPlan, context: contextvars.Context):
        self.plan = plan
        self.context = context
        self.started = time.perf_counter()
        self._lock = threading.Lock()
        self._finished = False

    def finish(self) -> float | None:
        """Return the elapsed seconds on the first call, None afterwards."""
        with self._lock:
            if self._finished:
                return None
            self._finished = True
        return time.perf_counter() - self.started


class AsyncInstrumentedCall(InstrumentedCall):
    """
    Instrumentation for a call that submits a statement and returns a future.

    The call is timed from submission until its future completes, observed
    through the driver's add_callbacks(callback, errback) API, and reported
    with the same metrics and samples as InstrumentedCall. Names, the
    tracked-context flag and the trace context are taken at submission, and
    completion is reported inside a copy of the submitting context. A result
    without add_callbacks is reported as soon as the call returns.

    Submissions made while a request-level call runs its original (the
    driver's Session.execute delegating to execute_async) are already timed
    by that call and are not recorded again.
    """

    def __init__(
        self,
        original: Callable[..., Any],
        agent: AgentInterface,
        *,
        settings: InstrumentationSettings | None = None,
        library: str = "cassandra",
        query_argument: int = 0,
    ):
        super().__init__(
            original,
            agent,
            settings=settings,
            library=library,
            query_argument=query_argument,
        )

    def invoke(self, original: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        if _request_active.get() or not self._should_record():
            return original(*args, **kwargs)

        try:
            plan = self._plan(args, kwargs)
        except Exception as e:
            logger.debug(
                f"Skipping instrumentation, could not name call: {e}",
                extra={"library": self.library, "error": str(e)},
            )
            return original(*args, **kwargs)

        pending = _PendingCall(plan, contextvars.copy_context())
        try:
            future = original(*args, **kwargs)
        except BaseException:
            self._complete(pending)
            raise

        self._watch(future, pending)
        return future

    def _watch(self, future: Any, pending: _PendingCall) -> None:
        try:
            add_callbacks = getattr(future, "add_callbacks", None)
            if not callable(add_callbacks):
                self._complete(pending)
                return
            add_callbacks(
                callback=self._on_done,
                errback=self._on_done,
                callback_args=(pending,),
                errback_args=(pending,),
            )
        except Exception as e:
            logger.warning(
                f"Could not watch future, reporting at submission: {e}",
                extra={"library": self.library, "metric": pending.plan.primary},
                exc_info=True,
            )
            self._complete(pending)

    def _on_done(self, response: Any, pending: _PendingCall) -> None:
        # Runs on the driver's event loop thread
        self._complete(pending)

    def _complete(self, pending: _PendingCall) -> None:
        elapsed = pending.finish()
        if elapsed is None:
            return
        try:
            pending.context.run(self._record, pending.plan, elapsed)
        except Exception as e:
            logger.warning(
                f"Could not report completed call: {e}",
                extra={"library": self.library, "metric": pending.plan.primary},
                exc_info=True,
            )

    def _record(self, plan: _CallPlan, elapsed: float) -> None:
        try:
            self._agent.record_timing(plan.metrics, elapsed)
        except Exception as e:
            logger.warning(
                f"Timing recorder failed: {e}",
                extra={"library": self.library, "metrics": sorted(plan.metrics)},
                exc_info=True,
            )
        self._report(plan, elapsed)
