"""Retrieve provider metrics and record them as destination samples.

Two strategies are available per collector:

- statistics: one `get_metric_statistics` query per metric definition
- batched: `(metric, statistic)` pairs packed into `get_metric_data` queries
  of at most `BATCH_LIMIT` entries, following continuation tokens

Each batched query carries a correlation id `m<metric>s<stat>q<sequence>`
from which results are demultiplexed back onto their metric definition.
"""

import logging
import math
import re
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from cloud_agent.check import DestinationCheck
from cloud_agent.constants import (
    BATCH_LIMIT,
    METRIC_NAME_SEPARATOR,
    METRIC_TYPE_HISTOGRAM,
    METRIC_TYPE_FLOAT64,
    METRIC_TYPE_STRING,
)
from cloud_agent.providers import (
    MetricDataQuery,
    MetricDataResult,
    MetricTimespan,
    ProviderError,
    ProviderMetricsAPI,
)
from cloud_agent.settings import Dimension, MetricDefinition, Tag
from cloud_agent.submission import MetricBuffer

logger = logging.getLogger(__name__)

QUERY_ID_FORMAT = "m{metric}s{stat}q{seq}"
QUERY_ID_PATTERN = re.compile(r"^m(\d+)s(\w+)q(\d+)$")

METRIC_TYPE_MAP = {
    "gauge": METRIC_TYPE_FLOAT64,
    "counter": METRIC_TYPE_FLOAT64,
    "histogram": METRIC_TYPE_HISTOGRAM,
    "text": METRIC_TYPE_STRING,
}


def query_id(metric_idx: int, stat: str, seq: int) -> str:
    # query ids only allow [a-zA-Z0-9_], percentiles look like p99.9
    return QUERY_ID_FORMAT.format(metric=metric_idx, stat=stat.replace(".", "_"), seq=seq)


def parse_query_id(result_id: str) -> tuple[int, str, int] | None:
    """Decode a correlation id into (metric index, statistic, sequence)."""
    match = QUERY_ID_PATTERN.match(result_id)
    if match is None:
        return None
    return int(match.group(1)), match.group(2), int(match.group(3))


def dimension_tags(dimensions: list[Dimension]) -> list[Tag]:
    return [Tag(category=d.name, value=d.value) for d in dimensions]


class MetricRetrievalEngine:
    """Retrieves the metrics of one collector's catalog and writes them to a buffer.

    Provider errors are handed to `error_tracker` (the owning collector)
    before anything else happens with them. Authorization errors abort the
    retrieval, every other provider error skips only the affected query.
    """

    def __init__(
        self,
        namespace: str,
        metrics: list[MetricDefinition],
        check: DestinationCheck,
        dimensions: list[Dimension] | None = None,
        tags: list[Tag] | None = None,
        shutdown_event: threading.Event | None = None,
        error_tracker: Callable[[ProviderError], None] | None = None,
    ):
        self.namespace = namespace
        self.metrics = metrics
        self.check = check
        self.dimensions = dimensions or []
        self.tags = tags or []
        self.shutdown_event = shutdown_event or threading.Event()
        self.error_tracker = error_tracker

    def done(self) -> bool:
        return self.shutdown_event.is_set()

    def _handle_provider_error(self, err: ProviderError, context: str) -> None:
        if self.error_tracker is not None:
            self.error_tracker(err)
        if err.is_authorization_error:
            raise err
        logger.error(
            "%s %s: %s (request id: %s)", context, self.namespace, err, err.request_id
        )

    def _query_dimensions(self, dimensions: list[Dimension] | None) -> list[Dimension]:
        return list(dimensions) if dimensions else list(self.dimensions)

    def _metric_tags(self, dimensions: list[Dimension], tags: list[Tag] | None) -> list[Tag]:
        return [*(tags or []), *self.tags, *dimension_tags(dimensions)]

    def metric_stats(
        self,
        api: ProviderMetricsAPI,
        buffer: MetricBuffer,
        timespan: MetricTimespan,
        dimensions: list[Dimension] | None = None,
        tags: list[Tag] | None = None,
    ) -> None:
        """Retrieve every enabled metric with one statistics query each.

        Raises:
            ProviderError: On an authorization error from the provider.
        """
        query_dimensions = self._query_dimensions(dimensions)
        metric_tags = self._metric_tags(query_dimensions, tags)

        for definition in self.metrics:
            if definition.disabled:
                continue

            try:
                datapoints = api.get_metric_statistics(
                    namespace=self.namespace,
                    metric_name=definition.provider.name,
                    statistics=definition.provider.stats,
                    dimensions=query_dimensions,
                    timespan=timespan,
                )
            except ProviderError as e:
                self._handle_provider_error(
                    e, f"Retrieving statistics for {definition.provider.name} in"
                )
                continue

            samples = []
            for dp in datapoints:
                for stat in definition.provider.stats:
                    if stat in dp.values:
                        samples.append((dp.timestamp, dp.unit, stat, dp.values[stat]))
            samples.sort(key=lambda s: s[0])

            for timestamp, unit, stat, value in samples:
                sample_tags = list(metric_tags)
                if unit:
                    sample_tags.append(Tag(category="units", value=unit))
                self.record_metric(buffer, definition, stat, value, timestamp, sample_tags)

            if self.done():
                return

    def _build_batches(
        self, dimensions: list[Dimension], period: int
    ) -> list[list[MetricDataQuery]]:
        batches: list[list[MetricDataQuery]] = [[]]
        for metric_idx, definition in enumerate(self.metrics):
            if definition.disabled:
                continue
            for stat in definition.provider.stats:
                if len(batches[-1]) == BATCH_LIMIT:
                    batches.append([])
                batch = batches[-1]
                batch.append(
                    MetricDataQuery(
                        id=query_id(metric_idx, stat, len(batch)),
                        namespace=self.namespace,
                        metric_name=definition.provider.name,
                        stat=stat,
                        period=period,
                        dimensions=dimensions,
                    )
                )
        return [b for b in batches if b]

    def metric_data(
        self,
        api: ProviderMetricsAPI,
        buffer: MetricBuffer,
        timespan: MetricTimespan,
        dimensions: list[Dimension] | None = None,
        tags: list[Tag] | None = None,
    ) -> None:
        """Retrieve every enabled (metric, statistic) pair with batched queries.

        Raises:
            ProviderError: On an authorization error from the provider.
        """
        query_dimensions = self._query_dimensions(dimensions)
        metric_tags = self._metric_tags(query_dimensions, tags)

        for batch in self._build_batches(query_dimensions, timespan.period):
            if self.done():
                return

            try:
                page = api.get_metric_data(batch, timespan)
            except ProviderError as e:
                self._handle_provider_error(e, "Retrieving metric data for")
                continue

            while True:
                for result in page.results:
                    self._record_result(buffer, batch, result, metric_tags)
                    if self.done():
                        return

                if not page.next_token:
                    break
                try:
                    page = api.get_metric_data(batch, timespan, next_token=page.next_token)
                except ProviderError as e:
                    self._handle_provider_error(
                        e, "Retrieving metric data (next token) for"
                    )
                    break

    def _record_result(
        self,
        buffer: MetricBuffer,
        batch: list[MetricDataQuery],
        result: MetricDataResult,
        tags: list[Tag],
    ) -> None:
        result_id = result.id
        decoded = parse_query_id(result_id)
        if decoded is None:
            logger.error("Unable to extract metric ids from result id '%s'", result_id)
            return

        metric_idx, stat, seq = decoded
        if metric_idx >= len(self.metrics):
            logger.error(
                "Invalid metric index %d in result id '%s' (%d metrics)",
                metric_idx,
                result_id,
                len(self.metrics),
            )
            return
        if not stat:
            logger.error("Invalid metric stat in result id '%s'", result_id)
            return
        if seq >= len(batch):
            logger.error(
                "Invalid query index %d in result id '%s' (%d queries)",
                seq,
                result_id,
                len(batch),
            )
            return

        definition = self.metrics[metric_idx]
        # the query holds the statistic as requested, the id a sanitized copy
        stat = batch[seq].stat
        for timestamp, value in sorted(zip(result.timestamps, result.values)):
            self.record_metric(buffer, definition, stat, value, timestamp, tags)

    def record_metric(
        self,
        buffer: MetricBuffer,
        definition: MetricDefinition,
        stat: str,
        value: Any,
        timestamp: datetime | None,
        tags: list[Tag],
    ) -> bool:
        """Write one sample, named `<metric>`<stat>` with encoded stream tags.

        Returns:
            True if a sample was written.
        """
        name = definition.destination.name or definition.provider.name
        if stat:
            name += METRIC_NAME_SEPARATOR + stat

        sample_tags = [*tags, *definition.destination.tags]
        if definition.provider.units:
            sample_tags.append(
                Tag(category="units", value=definition.provider.units.lower())
            )

        metric_type = METRIC_TYPE_MAP.get(definition.destination.type)
        if metric_type is None:
            logger.warning(
                "Invalid metric type '%s' configured for %s, ignoring sample",
                definition.destination.type,
                name,
            )
            return False

        if isinstance(value, float) and not math.isfinite(value):
            logger.warning("Non-finite value %s for %s, ignoring sample", value, name)
            return False

        metric_name = self.check.metric_name(name, sample_tags)
        try:
            return self.check.write_metric_sample(
                buffer, metric_name, metric_type, value, timestamp
            )
        except ValueError as e:
            logger.warning("Recording sample for %s failed: %s", name, e)
            return False
