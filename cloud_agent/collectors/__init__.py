"""Provider service collectors and their registry."""

import logging
import threading
from typing import Any

from cloud_agent.check import DestinationCheck
from cloud_agent.settings import CollectorSettings
from cloud_agent.submission import MetricBuffer
from .base import Collector, CollectorCommon, CollectorError
from .ec2 import EC2Collector
from .gcp import ComputeCollector, gcp_config_example, new_gcp_collectors
from .namespace import NamespaceCollector

logger = logging.getLogger(__name__)

# namespaces without a dedicated collector, collected with configured metrics/dimensions
GENERIC_NAMESPACES = (
    "AWS/ApplicationELB",
    "AWS/CloudFront",
    "AWS/DX",
    "AWS/DynamoDB",
    "AWS/EBS",
    "AWS/EC2Spot",
    "AWS/ECS",
    "AWS/EFS",
    "AWS/ELB",
    "AWS/ES",
    "AWS/ElastiCache",
    "AWS/ElasticMapReduce",
    "AWS/KMS",
    "AWS/Lambda",
    "AWS/NATGateway",
    "AWS/NetworkELB",
    "AWS/RDS",
    "AWS/Route53",
    "AWS/S3",
    "AWS/SNS",
    "AWS/SQS",
    "AWS/TransitGateway",
)

REGISTRY: dict[str, tuple[str, type[Collector]]] = {
    ns.lower(): (ns, NamespaceCollector) for ns in GENERIC_NAMESPACES
}
REGISTRY[EC2Collector.namespace.lower()] = (EC2Collector.namespace, EC2Collector)


def new_collector(
    settings: CollectorSettings,
    check: DestinationCheck,
    buffer: MetricBuffer,
    shutdown_event: threading.Event,
) -> Collector:
    """Create the collector registered for the settings' namespace.

    Raises:
        CollectorError: If the namespace is unknown or the collector is misconfigured.
    """
    try:
        namespace, collector_cls = REGISTRY[settings.namespace.lower()]
    except KeyError:
        raise CollectorError(
            f"unrecognized service namespace '{settings.namespace}'"
        ) from None

    common = CollectorCommon(
        namespace=namespace,
        settings=settings,
        check=check,
        buffer=buffer,
        shutdown_event=shutdown_event,
        default_metrics=collector_cls.default_metrics(),
    )
    if collector_cls is EC2Collector:
        return EC2Collector(common, instance_filters=settings.instance_filters)
    return collector_cls(common)


def new_collectors(
    services: list[CollectorSettings],
    check: DestinationCheck,
    buffer: MetricBuffer,
    shutdown_event: threading.Event,
) -> list[Collector]:
    """Create collectors for every enabled, known service.

    Raises:
        CollectorError: If no collector could be created.
    """
    collectors = []
    for settings in services:
        if settings.disabled:
            continue
        try:
            collectors.append(new_collector(settings, check, buffer, shutdown_event))
        except CollectorError as e:
            logger.warning("Skipping service %s: %s", settings.namespace, e)

    if not collectors:
        raise CollectorError("no services configured from which to collect metrics")

    return collectors


def config_example() -> dict[str, Any]:
    """Build an example account configuration listing every known namespace."""
    services = []
    for namespace, collector_cls in sorted(REGISTRY.values()):
        service: dict[str, Any] = {
            "namespace": namespace,
            "disabled": collector_cls is not EC2Collector,
            "use_gmd": False,
            "dimensions": [],
            "tags": [],
            "metrics": [
                m.model_dump(mode="json") for m in collector_cls.default_metrics()
            ],
        }
        if collector_cls is EC2Collector:
            service["instance_filters"] = []
        services.append(service)

    return {
        "id": "example-account",
        "period": "basic",
        "aws": {
            "access_key_id": "...",
            "secret_access_key": "...",
        },
        "circonus": {
            "key": "...",
            "app": "cloud-agent",
            "url": "https://api.circonus.com/v2/",
            "cid": "",
            "broker_cid": "",
        },
        "tags": [{"category": "environment", "value": "production"}],
        "regions": [{"name": "us-east-1", "services": services, "tags": []}],
    }


__all__ = [
    "Collector",
    "CollectorCommon",
    "CollectorError",
    "ComputeCollector",
    "EC2Collector",
    "NamespaceCollector",
    "config_example",
    "gcp_config_example",
    "new_collector",
    "new_collectors",
    "new_gcp_collectors",
]
