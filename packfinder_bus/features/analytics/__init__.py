"""Analytics consumer and its warehouse sinks."""

from .consumer import (
    ANALYTICS_CONSUMER,
    ANALYTICS_EVENT_TYPES,
    AnalyticsHandler,
    InMemoryWarehouseSink,
    SqlWarehouseSink,
    WarehouseRow,
    WarehouseSink,
    build_analytics_consumer,
    build_row,
)
from .models import AnalyticsOrderEvent

__all__ = [
    "ANALYTICS_CONSUMER",
    "ANALYTICS_EVENT_TYPES",
    "AnalyticsHandler",
    "AnalyticsOrderEvent",
    "InMemoryWarehouseSink",
    "SqlWarehouseSink",
    "WarehouseRow",
    "WarehouseSink",
    "build_analytics_consumer",
    "build_row",
]
