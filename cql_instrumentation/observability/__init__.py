"""
CQL Instrumentation - Observability Module

In-process reference agent implementing AgentInterface, with harvest of
timings and slow samples to SQLite.

Usage:
    from cql_instrumentation.observability import get_agent

    agent = get_agent()
    with agent.transaction("GET /users"):
        session.execute("SELECT * FROM users")
    await agent.harvest()
"""

from .agent import (
    FullSample,
    JSONFormatter,
    LocalAgent,
    MetricStats,
    SlowSample,
    Transaction,
    get_agent,
    initialize_agent,
    reset_agent,
)

__all__ = [
    "LocalAgent",
    "get_agent",
    "initialize_agent",
    "reset_agent",
    "JSONFormatter",
    "Transaction",
    "MetricStats",
    "SlowSample",
    "FullSample",
]
