"""Encoding of metric samples and their submission to the ingestion endpoint."""

import io
import json
import logging
from datetime import datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter

from cloud_agent.broker import BrokerTLSConfig
from cloud_agent.constants import (
    CONNECTION_TIMEOUT,
    CONTENT_TYPE,
    MAX_METRIC_NAME_LEN,
    METRIC_TYPE_STRING,
    METRIC_TYPES,
    USER_AGENT,
)

logger = logging.getLogger(__name__)


class SubmissionError(requests.RequestException):
    """Exception raised when the ingestion endpoint rejects a submission."""


def encode_metric_sample(
    metric_name: str,
    metric_type: str,
    value: Any,
    timestamp: datetime | None = None,
) -> str | None:
    """Encode one sample as an httptrap JSON line (without the newline).

    Returns:
        The encoded sample, or None if the metric name exceeds the maximum
        length the broker accepts (the sample is dropped, not an error).

    Raises:
        ValueError: If the name or type is empty, the type is unknown or the
            value is not finite.
    """
    if not metric_name:
        raise ValueError("invalid metric name (empty)")
    if not metric_type:
        raise ValueError("invalid metric type (empty)")

    if len(metric_name) > MAX_METRIC_NAME_LEN:
        logger.warning(
            "Max metric name length exceeded (%d > %d), discarding '%s'",
            len(metric_name),
            MAX_METRIC_NAME_LEN,
            metric_name,
        )
        return None

    if metric_type not in METRIC_TYPES:
        raise ValueError(f"unrecognized metric type ({metric_type})")

    if metric_type == METRIC_TYPE_STRING:
        value = str(value)

    sample: dict[str, Any] = {"_type": metric_type, "_value": value}
    if timestamp is not None:
        # trap wants milliseconds
        sample["_ts"] = int(timestamp.timestamp()) * 1000

    try:
        return json.dumps({metric_name: sample}, separators=(",", ":"), allow_nan=False)
    except ValueError as e:
        raise ValueError(f"invalid metric value ({value!r}): {e}") from e


class MetricBuffer:
    """Newline delimited buffer of encoded samples awaiting submission."""

    def __init__(self, trace: bool = False) -> None:
        self._buf = io.StringIO()
        self.trace = trace

    def write_sample(
        self,
        metric_name: str,
        metric_type: str,
        value: Any,
        timestamp: datetime | None = None,
    ) -> bool:
        """Encode and append a sample. Returns False if the sample was dropped."""
        line = encode_metric_sample(metric_name, metric_type, value, timestamp)
        if line is None:
            return False
        if self.trace:
            logger.debug("Writing %s", line)
        self._buf.write(line)
        self._buf.write("\n")
        return True

    def getvalue(self) -> str:
        return self._buf.getvalue()

    def reset(self) -> None:
        self._buf.seek(0)
        self._buf.truncate(0)

    def __len__(self) -> int:
        return self._buf.tell()


class BrokerTLSAdapter(HTTPAdapter):
    """Transport adapter pinning connections to the broker's CA and common name."""

    def __init__(self, tls_config: BrokerTLSConfig, **kwargs: Any) -> None:
        self.tls_config = tls_config
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        kwargs["ssl_context"] = self.tls_config.ssl_context
        kwargs["server_hostname"] = self.tls_config.server_name
        kwargs["assert_hostname"] = self.tls_config.server_name
        super().init_poolmanager(*args, **kwargs)


class SubmissionClient:
    """HTTP client for sending metric samples to a check's submission URL.

    A new session is used for every submission, so a broker move (new URL,
    new TLS settings) never reuses stale connections.
    """

    def __init__(self, connection_timeout: int = CONNECTION_TIMEOUT):
        """
        Args:
            connection_timeout: HTTP request timeout in seconds
        """
        self.connection_timeout = connection_timeout

    def _put(
        self, submission_url: str, payload: bytes, tls_config: BrokerTLSConfig | None
    ) -> requests.Response:
        headers = {
            "User-Agent": USER_AGENT,
            "Content-Type": CONTENT_TYPE,
            "Accept": CONTENT_TYPE,
            "Connection": "close",
        }

        with requests.Session() as s:
            if tls_config is not None:
                s.mount("https://", BrokerTLSAdapter(tls_config))
            logger.debug("Putting %d bytes to %s", len(payload), submission_url)
            response = s.put(
                url=submission_url,
                data=payload,
                headers=headers,
                timeout=self.connection_timeout,
            )

        return response

    def submit(
        self,
        submission_url: str,
        buffer: MetricBuffer,
        tls_config: BrokerTLSConfig | None = None,
    ) -> None:
        """Send the buffered samples.

        Raises:
            requests.RequestException: If the submission fails.
        """
        response = self._put(
            submission_url, buffer.getvalue().encode("utf-8"), tls_config
        )
        if response.status_code != 200:
            logger.error(
                "Submitting telemetry to %s failed, response: %d: %s",
                submission_url,
                response.status_code,
                response.text,
            )
            raise SubmissionError(
                f"Metric submission failed with response code: {response.status_code}"
                f" and text: {response.text}",
            )

        logger.debug("Telemetry submitted: %s", response.text)
