"""Google Cloud Monitoring, Compute Engine and Resource Manager client."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from google.api import metric_pb2
from google.api_core.exceptions import GoogleAPICallError, GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import compute_v1, monitoring_v3, resourcemanager_v3
from google.oauth2 import service_account

from .types import (
    ComputeInstance,
    MetricDescriptor,
    MetricTimespan,
    ProjectInfo,
    ProviderError,
    ProviderMetricsAPI,
    TimeSeries,
)

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/cloud-platform.read-only"]

# value type name -> TypedValue field holding the point value
POINT_VALUE_FIELDS = {
    "DOUBLE": "double_value",
    "INT64": "int64_value",
    "STRING": "string_value",
}


@contextmanager
def provider_errors() -> Iterator[None]:
    """Translate google-api-core and google-auth exceptions into ProviderError."""
    try:
        yield
    except GoogleAPICallError as e:
        raise ProviderError(code=type(e).__name__, message=e.message or str(e)) from e
    except (GoogleAPIError, GoogleAuthError) as e:
        raise ProviderError(code=type(e).__name__, message=str(e)) from e


def _last_path_segment(url: str) -> str:
    # zones and machine types come back as resource URLs
    return url.rsplit("/", 1)[-1]


def value_type_name(value_type: Any) -> str:
    return metric_pb2.MetricDescriptor.ValueType.Name(int(value_type))


class GCPMonitoringAPI(ProviderMetricsAPI):
    """Provider metrics API backed by Cloud Monitoring (metrics), Compute Engine
    (discovery) and Resource Manager (project metadata), for one project.
    """

    def __init__(
        self,
        project_id: str,
        monitoring_client: Any,
        instances_client: Any,
        projects_client: Any,
    ):
        self.project_id = project_id
        self._monitoring = monitoring_client
        self._instances = instances_client
        self._projects = projects_client

    @classmethod
    def from_credentials_file(cls, credentials_file: Path) -> "GCPMonitoringAPI":
        """Build the clients from a service account key file.

        The project is the key's `project_id`.

        Raises:
            ProviderError: If the key file cannot be read or has no project id.
        """
        try:
            credentials = service_account.Credentials.from_service_account_file(
                str(credentials_file), scopes=SCOPES
            )
        except (OSError, ValueError, GoogleAuthError) as e:
            raise ProviderError(
                code="InvalidCredentials", message=f"loading {credentials_file}: {e}"
            ) from e

        if not credentials.project_id:
            raise ProviderError(
                code="InvalidCredentials",
                message=f"no project_id in {credentials_file}",
            )

        return cls(
            project_id=credentials.project_id,
            monitoring_client=monitoring_v3.MetricServiceClient(credentials=credentials),
            instances_client=compute_v1.InstancesClient(credentials=credentials),
            projects_client=resourcemanager_v3.ProjectsClient(credentials=credentials),
        )

    @property
    def project_name(self) -> str:
        return f"projects/{self.project_id}"

    def get_project(self) -> ProjectInfo:
        with provider_errors():
            project = self._projects.get_project(name=self.project_name)

        return ProjectInfo(
            id=self.project_id,
            name=project.display_name,
            state=project.state.name,
            labels=dict(project.labels),
        )

    def list_instances(self, filter_expression: str = "") -> list[ComputeInstance]:
        request = {"project": self.project_id}
        if filter_expression:
            request["filter"] = filter_expression

        instances = []
        with provider_errors():
            for _, scoped_list in self._instances.aggregated_list(request=request):
                for inst in scoped_list.instances:
                    instances.append(
                        ComputeInstance(
                            id=inst.name,
                            state=inst.status,
                            zone=_last_path_segment(inst.zone),
                            instance_type=_last_path_segment(inst.machine_type),
                            tags=dict(inst.labels),
                        )
                    )

        logger.debug("Listed %d instances in %s", len(instances), self.project_id)
        return instances

    def list_metric_descriptors(self, filter_expression: str) -> list[MetricDescriptor]:
        request = {"name": self.project_name, "filter": filter_expression}
        with provider_errors():
            return [
                MetricDescriptor(type=d.type, display_name=d.display_name, unit=d.unit)
                for d in self._monitoring.list_metric_descriptors(request=request)
            ]

    def list_time_series(
        self, filter_expression: str, timespan: MetricTimespan
    ) -> list[TimeSeries]:
        request = {
            "name": self.project_name,
            "filter": filter_expression,
            "interval": monitoring_v3.TimeInterval(
                {
                    "start_time": {"seconds": int(timespan.start.timestamp())},
                    "end_time": {"seconds": int(timespan.end.timestamp())},
                }
            ),
            "view": monitoring_v3.ListTimeSeriesRequest.TimeSeriesView.FULL,
        }

        series = []
        with provider_errors():
            for ts in self._monitoring.list_time_series(request=request):
                value_type = value_type_name(ts.value_type)
                value_field = POINT_VALUE_FIELDS.get(value_type)
                points = []
                if value_field is not None:
                    points = [
                        (p.interval.end_time, getattr(p.value, value_field))
                        for p in ts.points
                    ]
                series.append(
                    TimeSeries(
                        metric_type=ts.metric.type,
                        value_type=value_type,
                        resource_type=ts.resource.type,
                        resource_labels=dict(ts.resource.labels),
                        metric_labels=dict(ts.metric.labels),
                        points=points,
                    )
                )
        return series
