"""Collection instance: one account region, its destination check and collectors.

The scheduler wakes on a short fixed tick and decides on each wake whether a
collection is due, so the poll cadence is recomputed from `last_run_start`
instead of drifting with the time collections take.
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import requests

from cloud_agent.check import CheckError, DestinationCheck
from cloud_agent.collectors import Collector
from cloud_agent.constants import FALLBACK_WINDOW, PERIOD_TOLERANCE, TICK_INTERVAL
from cloud_agent.providers import MetricTimespan, ProviderMetricsAPI
from cloud_agent.settings import Tag
from cloud_agent.submission import MetricBuffer

logger = logging.getLogger(__name__)


def compute_timespan(
    now: datetime, last_run_start: datetime | None, period: int
) -> MetricTimespan:
    """Compute the window to collect, ending now.

    The first run collects a fixed fallback window. Later runs reach back one
    period beyond the previous run's start, so a delayed run widens the window
    instead of leaving a gap.
    """
    if last_run_start is None:
        start = now - timedelta(seconds=FALLBACK_WINDOW)
    else:
        elapsed = now - last_run_start
        start = now - (elapsed + timedelta(seconds=period))
    return MetricTimespan(start=start, end=now, period=period)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollectionInstance:
    """Runs the collectors of one account region on a drift tolerant schedule."""

    def __init__(
        self,
        instance_id: str,
        check: DestinationCheck,
        collectors: list[Collector],
        api_factory: Callable[[], ProviderMetricsAPI],
        period: int,
        buffer: MetricBuffer,
        base_tags: list[Tag] | None = None,
        tick_interval: int = TICK_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            instance_id: Account id, used in logs and error reports
            check: Resolved destination check
            collectors: Collectors, run sequentially on every collection
            api_factory: Creates the provider API client for one collection
            period: Collection period in seconds
            buffer: Buffer shared by the collectors
            base_tags: Tags added to every sample
            tick_interval: Seconds between scheduler wakes
            clock: Current time source
        """
        self.instance_id = instance_id
        self.check = check
        self.collectors = collectors
        self.api_factory = api_factory
        self.period = period
        self.buffer = buffer
        self.base_tags = base_tags or []
        self.tick_interval = tick_interval
        self.clock = clock

        self.last_run_start: datetime | None = None
        self.running = False
        self._lock = threading.Lock()
        self._collection_thread: threading.Thread | None = None

    def start(self, shutdown_event: threading.Event) -> None:
        """Run the scheduler until `shutdown_event` is set.

        An in-flight collection is waited for before returning, its collectors
        observe the same event and stop at their next loop boundary.
        """
        logger.info(
            "Starting collection for %s (period %ds, tick %ds)",
            self.instance_id,
            self.period,
            self.tick_interval,
        )
        while not shutdown_event.is_set():
            self._tick(shutdown_event)
            if shutdown_event.wait(self.tick_interval):
                break

        thread = self._collection_thread
        if thread is not None and thread.is_alive():
            logger.info("Waiting for in-flight collection of %s", self.instance_id)
            thread.join()
        logger.info("Stopped collection for %s", self.instance_id)

    def _tick(self, shutdown_event: threading.Event) -> threading.Thread | None:
        """Start a collection if one is due. Returns the started thread."""
        now = self.clock()
        with self._lock:
            if self.last_run_start is not None:
                elapsed = (now - self.last_run_start).total_seconds()
                if elapsed < self.period - PERIOD_TOLERANCE:
                    return None

            if self.running:
                logger.warning(
                    "Collection for %s already in progress, skipping", self.instance_id
                )
                return None

            timespan = compute_timespan(now, self.last_run_start, self.period)
            self.running = True
            self.last_run_start = now

        thread = threading.Thread(
            target=self._collect,
            args=(timespan, shutdown_event),
            name=f"collect-{self.instance_id}",
            daemon=True,
        )
        self._collection_thread = thread
        thread.start()
        return thread

    def _collect(self, timespan: MetricTimespan, shutdown_event: threading.Event) -> None:
        try:
            logger.debug(
                "Collecting %s from %s to %s",
                self.instance_id,
                timespan.start.isoformat(),
                timespan.end.isoformat(),
            )
            # a refresh failed on an earlier run, samples can't be delivered until it succeeds
            if self.check.needs_refresh:
                self.check.refresh()

            api = self.api_factory()
            for collector in self.collectors:
                if shutdown_event.is_set():
                    break
                try:
                    collector.collect(api, timespan, self.base_tags)
                except Exception as e:
                    # one collector failing must not stop the others
                    logger.error(
                        "Collector %s of %s failed: %s",
                        collector.id,
                        self.instance_id,
                        e,
                        exc_info=True,
                    )
                    self.buffer.reset()
                    self.check.report_error(
                        f"id: {self.instance_id}, collector: {collector.id}: {e}"
                    )

            if self.check.needs_refresh:
                self.check.refresh()
        except (CheckError, requests.RequestException) as e:
            logger.error("Refreshing check for %s failed: %s", self.instance_id, e)
        except Exception as e:
            logger.error(
                "Collection for %s failed: %s", self.instance_id, e, exc_info=True
            )
            self.check.report_error(f"id: {self.instance_id}: {e}")
        finally:
            with self._lock:
                self.running = False
