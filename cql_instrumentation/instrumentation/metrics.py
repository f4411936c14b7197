"""
CQL Instrumentation - Metric Namer

Builds the metric names a single intercepted call is reported under.
"""

from typing import Any

from .classifier import Operation, statement_prefix

CQL_NAMESPACE = "Database/CQL"
CASSANDRA_NAMESPACE = "Database/Cassandra"

DATASTORE_ALL = "Datastore/all"
DATASTORE_ALL_OTHER = "Datastore/allOther"


def primary_metric(operation: Operation) -> str:
    """
    Name the metric for a classified operation.

    Args:
        operation: Result of classify()

    Returns:
        "Database/CQL/<operation>", "Database/CQL/other" for unknown statements
    """
    return f"{CQL_NAMESPACE}/{Operation(operation).value}"


def rollup_metrics(in_tracked_context: bool) -> tuple[str, ...]:
    """
    Name the aggregate metrics every call also counts towards.

    Background work (outside a tracked web transaction) additionally rolls
    up into "Datastore/allOther" so it stays out of the foreground graphs.

    Args:
        in_tracked_context: Whether the call runs inside a tracked unit of work

    Returns:
        Rollup metric names; callers must not rely on their order
    """
    if in_tracked_context:
        return (DATASTORE_ALL,)
    return (DATASTORE_ALL, DATASTORE_ALL_OTHER)


def metric_names(operation: Operation, in_tracked_context: bool) -> frozenset[str]:
    """Primary metric plus rollups for one call."""
    return frozenset((primary_metric(operation), *rollup_metrics(in_tracked_context)))


def statement_metric(query: Any) -> str:
    """
    Name the statement-level metric from the uppercase prefix of a query.

    Args:
        query: Statement text or driver statement object

    Returns:
        "Database/Cassandra/<PREFIX>", "Database/Cassandra/other" without a prefix
    """
    prefix = statement_prefix(query)
    return f"{CASSANDRA_NAMESPACE}/{prefix or Operation.UNKNOWN.value}"
