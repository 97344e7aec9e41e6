import logging

from cloud_agent.providers import MetricTimespan, ProviderMetricsAPI
from cloud_agent.settings import Tag
from .base import Collector, CollectorCommon, CollectorError

logger = logging.getLogger(__name__)


class NamespaceCollector(Collector):
    """Collects the configured metrics of a namespace with its configured dimensions."""

    def __init__(self, common: CollectorCommon):
        super().__init__(common)
        if not common.metrics:
            raise CollectorError(f"no metrics configured for namespace {common.id}")

    def collect(
        self, api: ProviderMetricsAPI, timespan: MetricTimespan, base_tags: list[Tag]
    ) -> None:
        if not self.common.enabled():
            return

        logger.debug("Collecting telemetry for %s", self.id)
        self.common.retrieve(api, timespan, tags=base_tags)
        self.common.submit()
