"""AWS/EC2 collector.

Running instances are discovered with `describe_instances`, then the
catalog is retrieved and submitted once per instance with the `InstanceId`
dimension. Each instance's samples carry its zone, type, architecture, image
id and the instance's own tags.
"""

import logging

import requests

from cloud_agent.check import CheckError
from cloud_agent.providers import (
    ComputeInstance,
    MetricTimespan,
    ProviderError,
    ProviderMetricsAPI,
)
from cloud_agent.settings import (
    DestinationMetric,
    Dimension,
    MetricDefinition,
    ProviderMetric,
    Tag,
)
from .base import Collector, CollectorCommon, CollectorError

logger = logging.getLogger(__name__)

INSTANCE_STATE_RUNNING = "running"
INSTANCE_DIMENSION = "InstanceId"

DEFAULT_CATALOG = (
    ("CPUUtilization", "Percent"),
    ("DiskReadOps", "Count"),
    ("DiskWriteOps", "Count"),
    ("DiskReadBytes", "Bytes"),
    ("DiskWriteBytes", "Bytes"),
    ("NetworkIn", "Bytes"),
    ("NetworkOut", "Bytes"),
    ("NetworkPacketsIn", "Count"),
    ("NetworkPacketsOut", "Count"),
    ("EBSReadOps", "Count"),
    ("EBSWriteOps", "Count"),
    ("EBSReadBytes", "Bytes"),
    ("EBSWriteBytes", "Bytes"),
)


def instance_tags(instance: ComputeInstance) -> list[Tag]:
    tags = [
        Tag(category="zone", value=instance.zone),
        Tag(category="type", value=instance.instance_type),
        Tag(category="arch", value=instance.architecture),
        Tag(category="image_id", value=instance.image_id),
    ]
    for key, value in instance.tags.items():
        tags.append(Tag(category=key.replace(":", "_"), value=value))
    return tags


class EC2Collector(Collector):
    namespace = "AWS/EC2"

    def __init__(self, common: CollectorCommon, instance_filters=None):
        super().__init__(common)
        self.instance_filters = list(instance_filters or [])

    @classmethod
    def default_metrics(cls) -> list[MetricDefinition]:
        return [
            MetricDefinition(
                provider=ProviderMetric(name=name, stats=["Average"], units=units),
                destination=DestinationMetric(type="gauge"),
            )
            for name, units in DEFAULT_CATALOG
        ]

    def running_instances(self, api: ProviderMetricsAPI) -> list[ComputeInstance]:
        instances = api.describe_instances(self.instance_filters or None)
        return [i for i in instances if i.state == INSTANCE_STATE_RUNNING]

    def collect(
        self, api: ProviderMetricsAPI, timespan: MetricTimespan, base_tags: list[Tag]
    ) -> None:
        if not self.common.enabled():
            return

        try:
            instances = self.running_instances(api)
        except ProviderError as e:
            self.common.track_provider_error(e)
            raise CollectorError(f"getting instance information: {e}") from e

        logger.debug("Collecting telemetry for %d instances", len(instances))
        for instance in instances:
            if self.common.done():
                return

            self.common.retrieve(
                api,
                timespan,
                dimensions=[Dimension(name=INSTANCE_DIMENSION, value=instance.id)],
                tags=[*base_tags, *instance_tags(instance)],
            )
            try:
                self.common.submit()
            except (CheckError, requests.RequestException) as e:
                logger.error("Submitting telemetry for instance %s failed: %s", instance.id, e)
                self.common.check.report_error(
                    f"collector: {self.id}, instance: {instance.id}: {e}"
                )
