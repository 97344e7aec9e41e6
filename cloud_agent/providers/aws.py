"""AWS CloudWatch and EC2 client."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import boto3
import botocore.session
from botocore.exceptions import BotoCoreError, ClientError

from cloud_agent.settings import AWSCredentials, Dimension, InstanceFilter
from .types import (
    ComputeInstance,
    Datapoint,
    MetricDataPage,
    MetricDataQuery,
    MetricDataResult,
    MetricTimespan,
    ProviderError,
    ProviderMetricsAPI,
)

logger = logging.getLogger(__name__)

STANDARD_STATISTICS = ("Average", "Sum", "Minimum", "Maximum", "SampleCount")

# global services (e.g. CloudFront, Route53) publish their metrics here
GLOBAL_REGION = "us-east-1"


def create_session(credentials: AWSCredentials, region: str) -> boto3.session.Session:
    """Create a boto3 session for one region from configured credentials."""
    region_name = GLOBAL_REGION if region in ("", "global") else region

    if credentials.role:
        core_session = botocore.session.Session()
        if credentials.credentials_file is not None:
            core_session.set_config_variable(
                "credentials_file", str(credentials.credentials_file)
            )
        core_session.set_config_variable("profile", credentials.role)
        return boto3.session.Session(
            botocore_session=core_session, region_name=region_name
        )

    return boto3.session.Session(
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        region_name=region_name,
    )


@contextmanager
def provider_errors() -> Iterator[None]:
    """Translate botocore exceptions into ProviderError."""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        raise ProviderError(
            code=error.get("Code", "Unknown"),
            message=error.get("Message", str(e)),
            request_id=e.response.get("ResponseMetadata", {}).get("RequestId"),
        ) from e
    except BotoCoreError as e:
        raise ProviderError(code=type(e).__name__, message=str(e)) from e


def _dimensions(dimensions: list[Dimension]) -> list[dict[str, str]]:
    return [{"Name": d.name, "Value": d.value} for d in dimensions]


class CloudWatchAPI(ProviderMetricsAPI):
    """Provider metrics API backed by CloudWatch (metrics) and EC2 (discovery)."""

    def __init__(self, session: boto3.session.Session):
        self.session = session
        self._cloudwatch = session.client("cloudwatch")
        self._ec2 = session.client("ec2")

    @classmethod
    def from_credentials(cls, credentials: AWSCredentials, region: str) -> "CloudWatchAPI":
        return cls(create_session(credentials, region))

    def get_metric_statistics(
        self,
        namespace: str,
        metric_name: str,
        statistics: list[str],
        dimensions: list[Dimension],
        timespan: MetricTimespan,
    ) -> list[Datapoint]:
        params = {
            "Namespace": namespace,
            "MetricName": metric_name,
            "Dimensions": _dimensions(dimensions),
            "StartTime": timespan.start,
            "EndTime": timespan.end,
            "Period": timespan.period,
        }
        standard = [s for s in statistics if s in STANDARD_STATISTICS]
        extended = [s for s in statistics if s not in STANDARD_STATISTICS]
        if standard:
            params["Statistics"] = standard
        if extended:
            params["ExtendedStatistics"] = extended

        with provider_errors():
            response = self._cloudwatch.get_metric_statistics(**params)

        datapoints = []
        for dp in response.get("Datapoints", []):
            values = {s: dp[s] for s in STANDARD_STATISTICS if s in dp}
            values.update(dp.get("ExtendedStatistics", {}))
            datapoints.append(
                Datapoint(timestamp=dp["Timestamp"], unit=dp.get("Unit", ""), values=values)
            )
        return datapoints

    def get_metric_data(
        self,
        queries: list[MetricDataQuery],
        timespan: MetricTimespan,
        next_token: str | None = None,
    ) -> MetricDataPage:
        params = {
            "MetricDataQueries": [
                {
                    "Id": q.id,
                    "MetricStat": {
                        "Metric": {
                            "Namespace": q.namespace,
                            "MetricName": q.metric_name,
                            "Dimensions": _dimensions(q.dimensions),
                        },
                        "Period": q.period,
                        "Stat": q.stat,
                    },
                    "ReturnData": True,
                }
                for q in queries
            ],
            "StartTime": timespan.start,
            "EndTime": timespan.end,
        }
        if next_token:
            params["NextToken"] = next_token

        with provider_errors():
            response = self._cloudwatch.get_metric_data(**params)

        results = [
            MetricDataResult(
                id=r["Id"],
                timestamps=list(r.get("Timestamps", [])),
                values=list(r.get("Values", [])),
            )
            for r in response.get("MetricDataResults", [])
        ]
        return MetricDataPage(results=results, next_token=response.get("NextToken"))

    def describe_instances(
        self, filters: list[InstanceFilter] | None = None
    ) -> list[ComputeInstance]:
        params = {}
        if filters:
            params["Filters"] = [{"Name": f.name, "Values": f.values} for f in filters]

        instances = []
        with provider_errors():
            paginator = self._ec2.get_paginator("describe_instances")
            for page in paginator.paginate(**params):
                for reservation in page.get("Reservations", []):
                    for inst in reservation.get("Instances", []):
                        instances.append(
                            ComputeInstance(
                                id=inst["InstanceId"],
                                state=inst.get("State", {}).get("Name", ""),
                                zone=inst.get("Placement", {}).get("AvailabilityZone", ""),
                                instance_type=inst.get("InstanceType", ""),
                                architecture=inst.get("Architecture", ""),
                                image_id=inst.get("ImageId", ""),
                                tags={t["Key"]: t["Value"] for t in inst.get("Tags", [])},
                            )
                        )

        logger.debug("Described %d instances", len(instances))
        return instances
