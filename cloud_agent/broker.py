"""Broker TLS resolution for metric submissions.

Enterprise brokers present certificates signed by the destination's private
CA, issued for the broker's common name. The public trap endpoint uses a
publicly trusted certificate and needs no special configuration.
"""

import ipaddress
import logging
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from cloud_agent.api_client import DestinationAPI
from cloud_agent.constants import CA_CERT_PATH, PUBLIC_SUBMISSION_HOST

logger = logging.getLogger(__name__)


class BrokerError(Exception):
    """Exception raised when broker TLS settings cannot be determined."""


@dataclass(frozen=True)
class BrokerTLSConfig:
    ssl_context: ssl.SSLContext
    server_name: str


def uses_public_certificate(submission_url: str) -> bool:
    return PUBLIC_SUBMISSION_HOST in submission_url


def broker_cn(broker: dict[str, Any], submission_url: str) -> str:
    """Determine the certificate common name to expect from the broker.

    Args:
        broker: Broker object from the management API.
        submission_url: The check bundle's submission URL.

    Raises:
        BrokerError: If the URL host is an IP which matches no broker detail.
    """
    host = urlparse(submission_url).hostname
    if not host:
        raise BrokerError(f"unable to determine host of submission url '{submission_url}'")

    try:
        ipaddress.ip_address(host)
    except ValueError:
        # not an ip, the host name is what the certificate is issued for
        return host

    for detail in broker.get("_details") or []:
        if detail.get("ipaddress") == host and detail.get("cn"):
            return detail["cn"]

    raise BrokerError(f"unable to match URL host ({host}) to broker {broker.get('_cid')}")


def _make_context(cafile: Path | None = None, cadata: str | None = None) -> ssl.SSLContext:
    try:
        context = ssl.create_default_context(
            cafile=str(cafile) if cafile else None, cadata=cadata
        )
    except (OSError, ssl.SSLError) as e:
        raise BrokerError(f"unable to load broker CA certificate: {e}") from e
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


def fetch_ca_certificate(api: DestinationAPI) -> str:
    """Fetch the destination's CA certificate (PEM) from the management API."""
    cadata = api.get(CA_CERT_PATH)
    contents = cadata.get("contents") if isinstance(cadata, dict) else None
    if not contents:
        raise BrokerError(
            f"unable to find CA cert 'contents' attribute in API response ({cadata})"
        )
    return contents


def resolve_broker_tls(
    api: DestinationAPI,
    broker: dict[str, Any],
    submission_url: str,
    ca_file: Path | None = None,
) -> BrokerTLSConfig | None:
    """Build the TLS configuration for submitting to a broker.

    Returns:
        None when the submission URL uses a public certificate, otherwise a
        TLS config pinned to `ca_file` (or the CA fetched from the API) with
        the broker's common name as the expected server name.
    """
    if uses_public_certificate(submission_url):
        return None

    cn = broker_cn(broker, submission_url)

    if ca_file is not None:
        context = _make_context(cafile=ca_file)
    else:
        context = _make_context(cadata=fetch_ca_certificate(api))

    logger.debug("Using broker CN '%s' for %s", cn, submission_url)
    return BrokerTLSConfig(ssl_context=context, server_name=cn)
