"""Destination check lifecycle.

A check is the named intake target (check bundle + broker) which receives
one account/region's samples. It is resolved (found or created) once at
startup and refreshed when its bundle moves to another broker.
"""

import logging
import secrets
import threading
from datetime import datetime
from typing import Any

import requests

from cloud_agent import NAME, VERSION
from cloud_agent.api_client import DestinationAPI
from cloud_agent.broker import BrokerError, BrokerTLSConfig, resolve_broker_tls
from cloud_agent.constants import (
    CHECK_METRIC_FILTERS,
    CHECK_METRIC_LIMIT,
    CHECK_STATUS_ACTIVE,
    CHECK_TYPE,
    ERROR_METRIC_NAME,
    METRIC_TYPE_STRING,
    PUBLIC_TRAP_BROKER_CID,
)
from cloud_agent.settings import DestinationSettings, Tag
from cloud_agent.submission import MetricBuffer, SubmissionClient
from cloud_agent.tags import encode_metric_tags, metric_name_with_stream_tags

logger = logging.getLogger(__name__)


class CheckError(Exception):
    """Exception raised when a check cannot be resolved or is in an invalid state."""


class AmbiguousCheckError(CheckError):
    """Exception raised when more than one active check matches the search criteria."""


def make_secret() -> str:
    return secrets.token_hex(8)


class DestinationCheck:
    """One destination check: its bundle, broker and broker TLS settings.

    Bundle and broker are always set (and cleared) together. Every access to
    them is serialized through a single lock, so a refresh is never observed
    half done by a concurrent submission.
    """

    def __init__(
        self,
        check_id: str,
        settings: DestinationSettings,
        display_name: str,
        tags: list[Tag] | None = None,
        api: DestinationAPI | None = None,
        submission_client: SubmissionClient | None = None,
    ):
        """
        Args:
            check_id: Unique identifier, used as the check target when searching/creating
            settings: Destination API credentials and check/broker selection
            display_name: Display name used when creating a check bundle
            tags: Tags added to the check bundle when creating it
            api: Management API client (default built from settings)
            submission_client: Client used to send metric samples
        """
        self.check_id = check_id
        self.settings = settings
        self.display_name = display_name
        self.tags = tags or []
        self.api = api or DestinationAPI(
            api_url=settings.api_url,
            api_key=settings.api_key,
            api_app=settings.api_app,
            ca_file=settings.api_ca_file,
        )
        self.submission_client = submission_client or SubmissionClient()

        self.bundle: dict[str, Any] | None = None
        self.broker: dict[str, Any] | None = None
        self.broker_tls: BrokerTLSConfig | None = None
        # set when a submission fails, the bundle may have moved to another broker
        self.needs_refresh = False
        self._lock = threading.Lock()

    @property
    def resolved(self) -> bool:
        return self.bundle is not None and self.broker is not None

    def resolve(self) -> None:
        """Find or create the check bundle, then resolve its broker and TLS settings.

        Raises:
            CheckError: If the check cannot be resolved.
            requests.RequestException: If the management API is unreachable.
        """
        with self._lock:
            self._resolve()

    def refresh(self) -> None:
        """Clear and re-resolve the check.

        Used when a bundle moves from one broker to another and submissions
        start failing: a fresh copy of the bundle carries the new submission
        URL and the broker TLS settings are rebuilt for it. A failed refresh
        leaves `needs_refresh` set, so the next collection tries again.

        Raises:
            CheckError: If the check cannot be resolved.
            requests.RequestException: If the management API is unreachable.
        """
        with self._lock:
            self.bundle = None
            self.broker = None
            self.broker_tls = None
            logger.info("Refreshing check '%s'", self.check_id)
            try:
                self._resolve()
            except (CheckError, requests.RequestException):
                self.needs_refresh = True
                raise
            self.needs_refresh = False

    def _resolve(self) -> None:
        try:
            bundle = self._resolve_check_bundle()
            broker, broker_tls = self._resolve_broker(bundle)
        except BrokerError as e:
            raise CheckError(f"resolving broker for check '{self.check_id}': {e}") from e

        self.bundle = bundle
        self.broker = broker
        self.broker_tls = broker_tls
        logger.info(
            "Using check bundle %s on broker %s", bundle.get("_cid"), broker.get("_cid")
        )

    def _resolve_check_bundle(self) -> dict[str, Any]:
        cid = self.settings.cid
        if cid:
            bundle = self.api.fetch_check_bundle(cid)
            if bundle.get("status") != CHECK_STATUS_ACTIVE:
                raise CheckError(f"invalid check bundle ({cid}), not active")
            return bundle

        return self._find_or_create_check_bundle()

    def _find_or_create_check_bundle(self) -> dict[str, Any]:
        search = f'(active:1)(type:"{CHECK_TYPE}")(host:{self.check_id})'
        bundles = self.api.search_check_bundles(search)

        active = [b for b in bundles or [] if b.get("status") == CHECK_STATUS_ACTIVE]
        if len(active) > 1:
            raise AmbiguousCheckError(
                f"multiple active checks found ({len(active)}) matching ({search})"
            )
        if active:
            return active[0]

        logger.info("No check bundle found for '%s', creating one", self.check_id)
        return self.api.create_check_bundle(self._check_bundle_config())

    def _check_bundle_config(self) -> dict[str, Any]:
        return {
            "brokers": [self.settings.broker_cid or PUBLIC_TRAP_BROKER_CID],
            "config": {
                "asynch_metrics": "true",
                "secret": make_secret(),
            },
            "display_name": self.display_name,
            "metric_filters": CHECK_METRIC_FILTERS,
            "metric_limit": CHECK_METRIC_LIMIT,
            "metrics": [],
            "notes": f"{NAME}-{VERSION}",
            "period": 60,
            "status": CHECK_STATUS_ACTIVE,
            "tags": encode_metric_tags(self.tags),
            "target": self.check_id,
            "timeout": 10,
            "type": CHECK_TYPE,
        }

    def _resolve_broker(
        self, bundle: dict[str, Any]
    ) -> tuple[dict[str, Any], BrokerTLSConfig | None]:
        brokers = bundle.get("brokers") or []
        if not brokers:
            raise CheckError(f"invalid check bundle ({bundle.get('_cid')}), 0 brokers")

        submission_url = self._submission_url(bundle)
        broker = self.api.fetch_broker(brokers[0])
        broker_tls = resolve_broker_tls(
            self.api, broker, submission_url, self.settings.broker_ca_file
        )
        return broker, broker_tls

    @staticmethod
    def _submission_url(bundle: dict[str, Any]) -> str:
        submission_url = (bundle.get("config") or {}).get("submission_url")
        if not submission_url:
            raise CheckError(
                f"invalid check bundle ({bundle.get('_cid')}), no submission url"
            )
        return submission_url

    def metric_name(self, metric_name: str, tags: list[Tag]) -> str:
        return metric_name_with_stream_tags(metric_name, tags)

    def write_metric_sample(
        self,
        buffer: MetricBuffer,
        metric_name: str,
        metric_type: str,
        value: Any,
        timestamp: datetime | None = None,
    ) -> bool:
        return buffer.write_sample(metric_name, metric_type, value, timestamp)

    def submit(self, buffer: MetricBuffer) -> None:
        """Send buffered samples to the check's submission URL.

        Raises:
            CheckError: If the check has not been resolved.
            requests.RequestException: If the submission fails.
        """
        with self._lock:
            if self.bundle is None:
                self.needs_refresh = True
                raise CheckError("invalid state (check bundle not resolved)")
            submission_url = self._submission_url(self.bundle)
            try:
                self.submission_client.submit(submission_url, buffer, self.broker_tls)
            except requests.RequestException:
                self.needs_refresh = True
                raise
            logger.debug("Submitted telemetry to %s", self.bundle.get("_cid"))

    def report_error(self, err: BaseException | str) -> None:
        """Send an error as a text sample on the check, best effort."""
        buffer = MetricBuffer()
        try:
            buffer.write_sample(ERROR_METRIC_NAME, METRIC_TYPE_STRING, str(err))
            self.submit(buffer)
        except (CheckError, ValueError, requests.RequestException) as e:
            logger.error("Submitting error metric sample failed: %s", e)
