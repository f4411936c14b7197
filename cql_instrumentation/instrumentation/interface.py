"""
CQL Instrumentation - Agent Interface

Defines the monitoring agent API the instrumentation consumes.
The agent is owned by the host process and handed to the wrappers.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any

Explainer = Callable[[Any, str], Any]


class AgentInterface(ABC):
    """
    Abstract base class for monitoring agents.

    Implementations must be safe to call from several threads at once;
    every call carries its own timing and metric names.
    """

    @abstractmethod
    def is_tracing_enabled(self) -> bool:
        """Return True if calls in the current execution context should be recorded."""
        pass

    @abstractmethod
    def is_in_tracked_context(self) -> bool:
        """Return True inside a tracked (foreground/web) unit of work."""
        pass

    @abstractmethod
    def record_timed_scope(self, metric_names: Iterable[str], body: Callable[[], Any]) -> Any:
        """
        Run body and attribute its elapsed wall-clock time to each metric name.

        Args:
            metric_names: Names to attribute the elapsed time to
            body: Zero-argument callable to run

        Returns:
            Whatever body returns; exceptions from body propagate
        """
        pass

    @abstractmethod
    def record_timing(self, metric_names: Iterable[str], elapsed: float) -> None:
        """
        Attribute an already measured elapsed time to each metric name.

        Used for calls that complete after the wrapper has returned.

        Args:
            metric_names: Names to attribute the elapsed time to
            elapsed: Elapsed seconds
        """
        pass

    @abstractmethod
    def record_slow_sample(
        self,
        query: str,
        metadata: dict[str, Any],
        elapsed: float,
        context: Any,
        explainer: Explainer | None = None,
    ) -> None:
        """
        Offer a call to the slow-sample recorder.

        Args:
            query: Statement text
            metadata: Extra attributes of the call
            elapsed: Elapsed seconds
            context: Per-call trace context
            explainer: Optional callable producing an explain plan
        """
        pass

    @abstractmethod
    def record_full_sample(
        self,
        query: str,
        metric: str,
        metadata: dict[str, Any],
        elapsed: float,
        context: Any,
        explainer: Explainer | None = None,
    ) -> None:
        """
        Offer a call to the full-sample recorder.

        Args:
            query: Statement text
            metric: Primary metric name of the call
            metadata: Extra attributes of the call
            elapsed: Elapsed seconds
            context: Per-call trace context
            explainer: Optional callable producing an explain plan
        """
        pass

    @abstractmethod
    def log_info(self, message: str) -> None:
        """Write an informational line to the agent log."""
        pass
