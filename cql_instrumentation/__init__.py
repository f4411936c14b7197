"""
CQL Instrumentation

Times Cassandra driver calls and reports them to a monitoring agent under
"Database/CQL/<operation>" and the datastore rollup metrics.
"""

__version__ = "1.0.0"

from .instrumentation import (
    AgentInterface,
    AsyncInstrumentedCall,
    CassandraInstrumentor,
    InstrumentedCall,
    StatementTracer,
    install_instrumentation,
)

__all__ = [
    "AgentInterface",
    "AsyncInstrumentedCall",
    "CassandraInstrumentor",
    "InstrumentedCall",
    "StatementTracer",
    "install_instrumentation",
]
