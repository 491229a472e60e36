"""Ingestion pipeline and event sink boundary."""

from delivery_telemetry.pipeline.ingestion import (
    IngestionPipeline,
    IngestResult,
    LastKnownValues,
    PipelineStatistics,
)
from delivery_telemetry.pipeline.sink import (
    EventDispatcher,
    EventSink,
    LocationEnrichingSink,
    LocationProvider,
    LoggingSink,
    SinkLoggingListener,
    create_sink_breaker,
)

__all__ = [
    "EventDispatcher",
    "EventSink",
    "IngestResult",
    "IngestionPipeline",
    "LastKnownValues",
    "LocationEnrichingSink",
    "LocationProvider",
    "LoggingSink",
    "PipelineStatistics",
    "SinkLoggingListener",
    "create_sink_breaker",
]
