import logging
import threading
import time
from collections.abc import Callable

from cloud_agent.check import DestinationCheck
from cloud_agent.constants import DISABLE_RETRY_INTERVAL
from cloud_agent.providers import MetricTimespan, ProviderError, ProviderMetricsAPI
from cloud_agent.retrieval import MetricRetrievalEngine
from cloud_agent.settings import CollectorSettings, Dimension, MetricDefinition, Tag
from cloud_agent.submission import MetricBuffer

logger = logging.getLogger(__name__)


class CollectorError(Exception):
    """Exception raised when a collector cannot collect its metrics."""


class CollectorCommon:
    """State and helpers shared by every collector.

    A collector disabled by configuration stays disabled silently. A collector
    disabled at runtime by an authorization error is re-enabled once
    `DISABLE_RETRY_INTERVAL` seconds have passed, until then every `enabled()`
    call logs a warning and reports False so no query is issued.
    """

    def __init__(
        self,
        namespace: str,
        settings: CollectorSettings,
        check: DestinationCheck,
        buffer: MetricBuffer,
        shutdown_event: threading.Event,
        default_metrics: list[MetricDefinition] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            namespace: Provider metric namespace, also the collector id
            settings: Collector configuration
            check: Destination check receiving the samples
            buffer: Buffer shared by all collectors of one collection instance
            shutdown_event: Cancellation token checked at loop boundaries
            default_metrics: Catalog used when no metrics are configured
            clock: Monotonic time source, seconds
        """
        self.id = namespace
        self.check = check
        self.buffer = buffer
        self.shutdown_event = shutdown_event
        self.clock = clock

        self.is_enabled = not settings.disabled
        self.disable_cause = ""
        self.disable_time: float | None = None

        self.dimensions: list[Dimension] = list(settings.dimensions)
        self.metrics: list[MetricDefinition] = list(
            settings.metrics or default_metrics or []
        )
        self.tags: list[Tag] = [*settings.tags, Tag(category="service", value=namespace)]
        self.use_batched = settings.use_batched

        self.engine = MetricRetrievalEngine(
            namespace=namespace,
            metrics=self.metrics,
            check=check,
            dimensions=self.dimensions,
            tags=self.tags,
            shutdown_event=shutdown_event,
            error_tracker=self.track_provider_error,
        )

    def enabled(self) -> bool:
        if self.is_enabled:
            return True

        # disabled by configuration
        if not self.disable_cause:
            return False

        if self.clock() - self.disable_time >= DISABLE_RETRY_INTERVAL:
            logger.info("Re-enabling collector %s after '%s'", self.id, self.disable_cause)
            self.is_enabled = True
            self.disable_cause = ""
            self.disable_time = None
            return True

        logger.warning(
            "Collector %s has been disabled (%s), retrying in %.0f seconds",
            self.id,
            self.disable_cause,
            DISABLE_RETRY_INTERVAL - (self.clock() - self.disable_time),
        )
        return False

    def track_provider_error(self, err: ProviderError) -> None:
        """Disable the collector on authorization errors.

        Other provider errors are logged by the caller with the failed query.
        """
        if not err.is_authorization_error:
            return
        logger.error(
            "Disabling collector %s: code=%s message=%s request_id=%s",
            self.id,
            err.code,
            err.message,
            err.request_id,
        )
        self.is_enabled = False
        self.disable_time = self.clock()
        self.disable_cause = err.message or err.code

    def done(self) -> bool:
        return self.shutdown_event.is_set()

    def retrieve(
        self,
        api: ProviderMetricsAPI,
        timespan: MetricTimespan,
        dimensions: list[Dimension] | None = None,
        tags: list[Tag] | None = None,
    ) -> None:
        """Retrieve the catalog into the shared buffer with the configured strategy."""
        if self.use_batched:
            self.engine.metric_data(api, self.buffer, timespan, dimensions, tags)
        else:
            self.engine.metric_stats(api, self.buffer, timespan, dimensions, tags)

    def submit(self) -> bool:
        """Submit and reset the shared buffer.

        Returns:
            False if there was nothing to submit.

        Raises:
            requests.RequestException: If the submission fails.
        """
        if len(self.buffer) == 0:
            logger.warning("No telemetry to submit for %s", self.id)
            return False

        try:
            logger.debug("Submitting telemetry for %s", self.id)
            self.check.submit(self.buffer)
        finally:
            self.buffer.reset()
        return True


class Collector:
    """Base class for provider service collectors."""

    namespace: str = ""

    def __init__(self, common: CollectorCommon):
        self.common = common

    @property
    def id(self) -> str:
        return self.common.id

    def collect(
        self, api: ProviderMetricsAPI, timespan: MetricTimespan, base_tags: list[Tag]
    ) -> None:
        """Collect the service's metrics for `timespan` and submit them.

        Raises:
            CollectorError: If the collection fails.
            ProviderError: On an authorization error from the provider.
            requests.RequestException: If the submission fails.
        """
        raise NotImplementedError

    @classmethod
    def default_metrics(cls) -> list[MetricDefinition]:
        return []
