"""
CQL Instrumentation - Instrumentation Module

Classifier, metric namer, call wrappers (request, async request, statement) and the registration guard.

Usage:
    from cql_instrumentation.instrumentation import InstrumentedCall, classify

    classify("SELECT * FROM users")      # Operation.SELECT
    log = InstrumentedCall(request_logger.log, agent)
"""

from .classifier import Operation, classify, statement_prefix, statement_text
from .interface import AgentInterface
from .metrics import metric_names, primary_metric, rollup_metrics, statement_metric
from .registration import (
    DEFAULT_HOOKS,
    CassandraInstrumentor,
    Hook,
    install_instrumentation,
    resolve_hook,
)
from .wrapper import AsyncInstrumentedCall, InstrumentedCall, StatementTracer, TraceContext, cql_explainer

__all__ = [
    # Classifier
    "Operation",
    "classify",
    "statement_prefix",
    "statement_text",
    # Metric names
    "primary_metric",
    "rollup_metrics",
    "metric_names",
    "statement_metric",
    # Wrappers
    "AgentInterface",
    "AsyncInstrumentedCall",
    "InstrumentedCall",
    "StatementTracer",
    "TraceContext",
    "cql_explainer",
    # Registration
    "Hook",
    "DEFAULT_HOOKS",
    "CassandraInstrumentor",
    "install_instrumentation",
    "resolve_hook",
]
