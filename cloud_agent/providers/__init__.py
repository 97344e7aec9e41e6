"""Provider monitoring API clients."""

from .types import (
    ComputeInstance,
    Datapoint,
    MetricDataPage,
    MetricDataQuery,
    MetricDataResult,
    MetricDescriptor,
    MetricTimespan,
    ProjectInfo,
    ProviderError,
    ProviderMetricsAPI,
    TimeSeries,
)

from .aws import CloudWatchAPI
from .gcp import GCPMonitoringAPI

__all__ = [
    "CloudWatchAPI",
    "ComputeInstance",
    "Datapoint",
    "GCPMonitoringAPI",
    "MetricDataPage",
    "MetricDataQuery",
    "MetricDataResult",
    "MetricDescriptor",
    "MetricTimespan",
    "ProjectInfo",
    "ProviderError",
    "ProviderMetricsAPI",
    "TimeSeries",
]
