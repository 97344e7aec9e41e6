from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cloud_agent.settings import Dimension, InstanceFilter

AUTHORIZATION_ERROR_CODES = frozenset(
    {
        # aws
        "AccessDenied",
        "AccessDeniedException",
        "UnauthorizedOperation",
        # gcp
        "PermissionDenied",
        "Unauthenticated",
    }
)


class ProviderError(Exception):
    """Exception raised for an error response from a provider API."""

    def __init__(self, code: str, message: str, request_id: str | None = None):
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.request_id = request_id

    @property
    def is_authorization_error(self) -> bool:
        return self.code in AUTHORIZATION_ERROR_CODES


@dataclass(frozen=True)
class MetricTimespan:
    start: datetime
    end: datetime
    period: int


@dataclass(frozen=True)
class Datapoint:
    timestamp: datetime
    unit: str
    # statistic name -> value
    values: dict[str, float]


@dataclass(frozen=True)
class MetricDataQuery:
    id: str
    namespace: str
    metric_name: str
    stat: str
    period: int
    dimensions: list[Dimension] = field(default_factory=list)


@dataclass(frozen=True)
class MetricDataResult:
    id: str
    timestamps: list[datetime]
    values: list[float]


@dataclass(frozen=True)
class MetricDataPage:
    results: list[MetricDataResult]
    next_token: str | None = None


@dataclass(frozen=True)
class ComputeInstance:
    id: str
    state: str
    zone: str = ""
    instance_type: str = ""
    architecture: str = ""
    image_id: str = ""
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProjectInfo:
    id: str
    name: str
    state: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricDescriptor:
    type: str
    display_name: str = ""
    unit: str = ""


@dataclass(frozen=True)
class TimeSeries:
    metric_type: str
    value_type: str
    resource_type: str = ""
    resource_labels: dict[str, str] = field(default_factory=dict)
    metric_labels: dict[str, str] = field(default_factory=dict)
    # (end of the sample interval, value)
    points: list[tuple[datetime, Any]] = field(default_factory=list)


class ProviderMetricsAPI:
    """Base class for provider monitoring API clients."""

    def get_metric_statistics(
        self,
        namespace: str,
        metric_name: str,
        statistics: list[str],
        dimensions: list[Dimension],
        timespan: MetricTimespan,
    ) -> list[Datapoint]:
        """Get aggregated statistics for one metric.

        Raises:
            ProviderError: If the provider returns an error
        """
        raise NotImplementedError

    def get_metric_data(
        self,
        queries: list[MetricDataQuery],
        timespan: MetricTimespan,
        next_token: str | None = None,
    ) -> MetricDataPage:
        """Get one page of time series for a batch of queries.

        Raises:
            ProviderError: If the provider returns an error
        """
        raise NotImplementedError

    def describe_instances(
        self, filters: list[InstanceFilter] | None = None
    ) -> list[ComputeInstance]:
        """List compute instances.

        Raises:
            ProviderError: If the provider returns an error
        """
        raise NotImplementedError

    def list_instances(self, filter_expression: str = "") -> list[ComputeInstance]:
        """List compute instances matching a provider filter expression.

        Raises:
            ProviderError: If the provider returns an error
        """
        raise NotImplementedError

    def list_metric_descriptors(self, filter_expression: str) -> list[MetricDescriptor]:
        """List the metric types matching a filter.

        Raises:
            ProviderError: If the provider returns an error
        """
        raise NotImplementedError

    def list_time_series(
        self, filter_expression: str, timespan: MetricTimespan
    ) -> list[TimeSeries]:
        """List raw time series matching a filter within `timespan`.

        Raises:
            ProviderError: If the provider returns an error
        """
        raise NotImplementedError
