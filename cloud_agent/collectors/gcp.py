"""GCP collectors.

Only Compute Engine is collected. Running instances are listed, then every
metric type Cloud Monitoring has for an instance is retrieved as raw time
series and submitted once per instance.
"""

import logging
import threading
from typing import Any

import requests

from cloud_agent.check import CheckError, DestinationCheck
from cloud_agent.constants import (
    GCP_DEFAULT_SERVICES,
    GCP_MIN_COLLECT_INTERVAL,
    METRIC_TYPE_FLOAT64,
    METRIC_TYPE_INT64,
    METRIC_TYPE_STRING,
)
from cloud_agent.providers import (
    MetricTimespan,
    ProviderError,
    ProviderMetricsAPI,
    TimeSeries,
)
from cloud_agent.settings import CollectorSettings, GCPCollectorSettings, GCPFilter, Tag
from cloud_agent.submission import MetricBuffer
from .base import Collector, CollectorCommon, CollectorError

logger = logging.getLogger(__name__)

INSTANCE_STATUS_RUNNING = "RUNNING"

VALUE_TYPE_MAP = {
    "DOUBLE": METRIC_TYPE_FLOAT64,
    "INT64": METRIC_TYPE_INT64,
    "STRING": METRIC_TYPE_STRING,
}

# carried by the descriptor already
IGNORED_METRIC_LABELS = frozenset({"metric_type", "metric_kind"})

# units which say nothing ("1" is the dimensionless unit)
IGNORED_UNITS = frozenset({"", "1"})


def instance_filter(settings: GCPFilter) -> str:
    """Render an instance list filter, `(labels.k = "v")` per label."""
    if settings.expression:
        return settings.expression
    return "".join(
        f'(labels.{key} = "{value}")'
        for key, value in sorted(settings.labels.items())
        if key and value
    )


def label_tags(labels: dict[str, str], ignored=frozenset()) -> list[Tag]:
    return [
        Tag(category=k, value=v) for k, v in sorted(labels.items()) if k not in ignored
    ]


class ComputeCollector(Collector):
    namespace = "compute"

    def __init__(self, common: CollectorCommon, filter_expression: str = ""):
        super().__init__(common)
        self.filter_expression = filter_expression

    def collect(
        self, api: ProviderMetricsAPI, timespan: MetricTimespan, base_tags: list[Tag]
    ) -> None:
        if not self.common.enabled():
            return

        try:
            instances = api.list_instances(self.filter_expression)
        except ProviderError as e:
            self.common.track_provider_error(e)
            raise CollectorError(f"listing instances: {e}") from e

        running = [i for i in instances if i.state == INSTANCE_STATUS_RUNNING]
        logger.debug("Collecting telemetry for %d instances", len(running))
        for instance in running:
            if self.common.done():
                return

            metric_filter = f'metric.labels.instance_name = "{instance.id}"'
            self.retrieve(api, timespan, metric_filter, base_tags)
            try:
                self.common.submit()
            except (CheckError, requests.RequestException) as e:
                logger.error("Submitting telemetry for instance %s failed: %s", instance.id, e)
                self.common.check.report_error(
                    f"collector: {self.id}, instance: {instance.id}: {e}"
                )

    def _provider_error(self, err: ProviderError, context: str) -> None:
        self.common.track_provider_error(err)
        if err.is_authorization_error:
            raise err
        logger.error("%s for %s: %s", context, self.id, err)

    def retrieve(
        self,
        api: ProviderMetricsAPI,
        timespan: MetricTimespan,
        metric_filter: str,
        base_tags: list[Tag],
    ) -> None:
        """Write every time series matching `metric_filter` to the shared buffer.

        Raises:
            ProviderError: On an authorization error from the provider.
        """
        try:
            descriptors = api.list_metric_descriptors(metric_filter)
        except ProviderError as e:
            self._provider_error(e, "Listing metric descriptors")
            return

        for descriptor in descriptors:
            tags = [*base_tags, *self.common.tags]
            if descriptor.unit not in IGNORED_UNITS:
                tags.append(Tag(category="units", value=descriptor.unit))

            series_filter = f'metric.type = "{descriptor.type}" {metric_filter}'
            try:
                series_list = api.list_time_series(series_filter, timespan)
            except ProviderError as e:
                self._provider_error(e, f"Listing time series {descriptor.type}")
                continue

            name = descriptor.display_name or descriptor.type
            for series in series_list:
                self.record_series(name, series, tags)

            if self.common.done():
                return

    def record_series(self, name: str, series: TimeSeries, tags: list[Tag]) -> int:
        """Write one time series' points, oldest first. Returns the number written."""
        metric_type = VALUE_TYPE_MAP.get(series.value_type)
        if metric_type is None:
            logger.warning(
                "Unsupported value type %s for %s, ignoring", series.value_type, name
            )
            return 0

        sample_tags = [
            *tags,
            Tag(category="resource_type", value=series.resource_type),
            *label_tags(series.resource_labels),
            *label_tags(series.metric_labels, IGNORED_METRIC_LABELS),
        ]
        check = self.common.check
        metric_name = check.metric_name(name, sample_tags)

        written = 0
        for timestamp, value in sorted(series.points, key=lambda p: p[0]):
            try:
                if check.write_metric_sample(
                    self.common.buffer, metric_name, metric_type, value, timestamp
                ):
                    written += 1
            except ValueError as e:
                logger.warning("Recording sample for %s failed: %s", name, e)
        return written


GCP_REGISTRY: dict[str, type[ComputeCollector]] = {
    ComputeCollector.namespace: ComputeCollector,
}


def new_gcp_collectors(
    services: list[GCPCollectorSettings],
    check: DestinationCheck,
    buffer: MetricBuffer,
    shutdown_event: threading.Event,
) -> list[Collector]:
    """Create collectors for every enabled, known GCP service.

    Compute is collected when no service is configured.

    Raises:
        CollectorError: If no collector could be created.
    """
    if not services:
        services = [GCPCollectorSettings(name=name) for name in GCP_DEFAULT_SERVICES]

    collectors: list[Collector] = []
    for settings in services:
        if settings.disabled:
            continue
        collector_cls = GCP_REGISTRY.get(settings.name.lower())
        if collector_cls is None:
            logger.warning("Skipping service %s: unrecognized GCP service", settings.name)
            continue

        common = CollectorCommon(
            namespace=collector_cls.namespace,
            settings=CollectorSettings(namespace=collector_cls.namespace, tags=settings.tags),
            check=check,
            buffer=buffer,
            shutdown_event=shutdown_event,
        )
        collectors.append(
            collector_cls(common, filter_expression=instance_filter(settings.filter))
        )

    if not collectors:
        raise CollectorError("no services configured from which to collect metrics")

    return collectors


def gcp_config_example() -> dict[str, Any]:
    """Build an example GCP project configuration."""
    return {
        "id": "example-project",
        "gcp": {
            "credentials_file": "/opt/cloud-agent/etc/gcp-service-account.json",
            "collect_interval": GCP_MIN_COLLECT_INTERVAL,
            "services": [
                {
                    "name": ComputeCollector.namespace,
                    "disabled": False,
                    "tags": [],
                    "filter": {"labels": {}, "expression": ""},
                }
            ],
        },
        "circonus": {
            "key": "...",
            "app": "cloud-agent",
            "url": "https://api.circonus.com/v2/",
            "cid": "",
            "broker_cid": "",
        },
        "tags": [{"category": "environment", "value": "production"}],
    }
