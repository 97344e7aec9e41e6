"""Unit tests for the GCP provider client."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from google.api import metric_pb2
from google.api_core import exceptions as api_exceptions
from google.cloud import monitoring_v3, resourcemanager_v3
from pytest_mock import MockerFixture

from cloud_agent.providers import (
    ComputeInstance,
    GCPMonitoringAPI,
    MetricDescriptor,
    MetricTimespan,
    ProviderError,
)
from cloud_agent.providers.gcp import provider_errors

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
TIMESPAN = MetricTimespan(start=T0 - timedelta(minutes=10), end=T0, period=300)
ValueType = metric_pb2.MetricDescriptor.ValueType


@pytest.fixture
def monitoring():
    return Mock()


@pytest.fixture
def instances_client():
    return Mock()


@pytest.fixture
def projects():
    return Mock()


@pytest.fixture
def api(monitoring, instances_client, projects):
    return GCPMonitoringAPI(
        project_id="my-project",
        monitoring_client=monitoring,
        instances_client=instances_client,
        projects_client=projects,
    )


def point(ts, **value):
    return SimpleNamespace(
        interval=SimpleNamespace(end_time=ts), value=SimpleNamespace(**value)
    )


def series(value_type, points, metric_labels=None):
    return SimpleNamespace(
        metric=SimpleNamespace(
            type="compute.googleapis.com/instance/cpu/utilization",
            labels=metric_labels or {"instance_name": "web-1"},
        ),
        resource=SimpleNamespace(
            type="gce_instance",
            labels={"instance_id": "42", "zone": "us-central1-a"},
        ),
        value_type=ValueType.Value(value_type),
        points=points,
    )


class TestFromCredentialsFile:
    """Tests for building the clients from a service account key."""

    def test_project_from_key(self, mocker: MockerFixture, temp_dir):
        credentials = Mock(project_id="my-project")
        load = mocker.patch(
            "cloud_agent.providers.gcp.service_account.Credentials.from_service_account_file",
            return_value=credentials,
        )
        monitoring_client = mocker.patch(
            "cloud_agent.providers.gcp.monitoring_v3.MetricServiceClient"
        )
        mocker.patch("cloud_agent.providers.gcp.compute_v1.InstancesClient")
        mocker.patch("cloud_agent.providers.gcp.resourcemanager_v3.ProjectsClient")

        api = GCPMonitoringAPI.from_credentials_file(temp_dir / "sa.json")

        assert api.project_id == "my-project"
        assert api.project_name == "projects/my-project"
        assert load.call_args[0][0] == str(temp_dir / "sa.json")
        monitoring_client.assert_called_once_with(credentials=credentials)

    def test_missing_file(self, temp_dir):
        with pytest.raises(ProviderError) as exc_info:
            GCPMonitoringAPI.from_credentials_file(temp_dir / "missing.json")

        assert exc_info.value.code == "InvalidCredentials"

    def test_not_a_service_account_key(self, temp_dir):
        key_file = temp_dir / "sa.json"
        key_file.write_text("{}")

        with pytest.raises(ProviderError, match="InvalidCredentials"):
            GCPMonitoringAPI.from_credentials_file(key_file)

    def test_key_without_project(self, mocker: MockerFixture, temp_dir):
        mocker.patch(
            "cloud_agent.providers.gcp.service_account.Credentials.from_service_account_file",
            return_value=Mock(project_id=None),
        )

        with pytest.raises(ProviderError, match="no project_id"):
            GCPMonitoringAPI.from_credentials_file(temp_dir / "sa.json")


class TestProviderErrors:
    """Tests for google exception translation."""

    def test_permission_denied_is_authorization_error(self):
        with pytest.raises(ProviderError) as exc_info:
            with provider_errors():
                raise api_exceptions.PermissionDenied("monitoring.timeSeries.list denied")

        assert exc_info.value.code == "PermissionDenied"
        assert exc_info.value.message == "monitoring.timeSeries.list denied"
        assert exc_info.value.is_authorization_error

    def test_unavailable(self):
        with pytest.raises(ProviderError) as exc_info:
            with provider_errors():
                raise api_exceptions.ServiceUnavailable("try again")

        assert exc_info.value.code == "ServiceUnavailable"
        assert not exc_info.value.is_authorization_error

    def test_retry_exhausted(self):
        with pytest.raises(ProviderError, match="RetryError"):
            with provider_errors():
                raise api_exceptions.RetryError("deadline exceeded", None)


class TestGetProject:
    def test_active_project(self, api, projects):
        projects.get_project.return_value = SimpleNamespace(
            display_name="My Project",
            state=resourcemanager_v3.Project.State.ACTIVE,
            labels={"team": "infra"},
        )

        info = api.get_project()

        projects.get_project.assert_called_once_with(name="projects/my-project")
        assert info.name == "My Project"
        assert info.state == "ACTIVE"
        assert info.labels == {"team": "infra"}


class TestListInstances:
    """Tests for Compute Engine discovery."""

    def test_aggregated_list(self, api, instances_client):
        web = SimpleNamespace(
            name="web-1",
            status="RUNNING",
            zone="https://www.googleapis.com/compute/v1/projects/my-project/zones/us-central1-a",
            machine_type="https://www.googleapis.com/compute/v1/projects/my-project/zones/us-central1-a/machineTypes/e2-small",
            labels={"env": "prod"},
        )
        instances_client.aggregated_list.return_value = [
            ("zones/us-central1-a", SimpleNamespace(instances=[web])),
            ("zones/us-east1-b", SimpleNamespace(instances=[])),
        ]

        instances = api.list_instances('(labels.env = "prod")')

        assert instances == [
            ComputeInstance(
                id="web-1",
                state="RUNNING",
                zone="us-central1-a",
                instance_type="e2-small",
                tags={"env": "prod"},
            )
        ]
        instances_client.aggregated_list.assert_called_once_with(
            request={"project": "my-project", "filter": '(labels.env = "prod")'}
        )

    def test_no_filter(self, api, instances_client):
        instances_client.aggregated_list.return_value = []

        assert api.list_instances() == []
        instances_client.aggregated_list.assert_called_once_with(
            request={"project": "my-project"}
        )

    def test_error(self, api, instances_client):
        instances_client.aggregated_list.side_effect = api_exceptions.Forbidden("nope")

        with pytest.raises(ProviderError, match="Forbidden"):
            api.list_instances()


class TestMonitoring:
    """Tests for metric descriptors and time series."""

    def test_list_metric_descriptors(self, api, monitoring):
        monitoring.list_metric_descriptors.return_value = [
            SimpleNamespace(
                type="compute.googleapis.com/instance/cpu/utilization",
                display_name="CPU utilization",
                unit="10^2.%",
            )
        ]

        descriptors = api.list_metric_descriptors('metric.labels.instance_name = "web-1"')

        assert descriptors == [
            MetricDescriptor(
                type="compute.googleapis.com/instance/cpu/utilization",
                display_name="CPU utilization",
                unit="10^2.%",
            )
        ]
        request = monitoring.list_metric_descriptors.call_args[1]["request"]
        assert request == {
            "name": "projects/my-project",
            "filter": 'metric.labels.instance_name = "web-1"',
        }

    def test_list_time_series(self, api, monitoring):
        monitoring.list_time_series.return_value = [
            series(
                "DOUBLE",
                [point(T0, double_value=0.5), point(T0 - timedelta(minutes=1), double_value=0.25)],
                metric_labels={"instance_name": "web-1", "metric_kind": "GAUGE"},
            )
        ]

        result = api.list_time_series("metric.type = x", TIMESPAN)

        request = monitoring.list_time_series.call_args[1]["request"]
        assert request["name"] == "projects/my-project"
        assert request["filter"] == "metric.type = x"
        assert request["view"] == monitoring_v3.ListTimeSeriesRequest.TimeSeriesView.FULL
        assert int(request["interval"].end_time.timestamp()) == int(T0.timestamp())
        assert int(request["interval"].start_time.timestamp()) == int(
            TIMESPAN.start.timestamp()
        )

        [ts] = result
        assert ts.value_type == "DOUBLE"
        assert ts.resource_type == "gce_instance"
        assert ts.resource_labels == {"instance_id": "42", "zone": "us-central1-a"}
        assert ts.metric_labels == {"instance_name": "web-1", "metric_kind": "GAUGE"}
        assert ts.points == [(T0, 0.5), (T0 - timedelta(minutes=1), 0.25)]

    @pytest.mark.parametrize(
        "value_type,value", [("INT64", {"int64_value": 7}), ("STRING", {"string_value": "ok"})]
    )
    def test_point_values(self, api, monitoring, value_type, value):
        monitoring.list_time_series.return_value = [series(value_type, [point(T0, **value)])]

        [ts] = api.list_time_series("metric.type = x", TIMESPAN)

        assert ts.points == [(T0, *value.values())]

    def test_unsupported_value_type_has_no_points(self, api, monitoring):
        monitoring.list_time_series.return_value = [
            series("DISTRIBUTION", [point(T0, distribution_value=object())])
        ]

        [ts] = api.list_time_series("metric.type = x", TIMESPAN)

        assert ts.value_type == "DISTRIBUTION"
        assert ts.points == []

    def test_error(self, api, monitoring):
        monitoring.list_time_series.side_effect = api_exceptions.PermissionDenied("denied")

        with pytest.raises(ProviderError) as exc_info:
            api.list_time_series("metric.type = x", TIMESPAN)

        assert exc_info.value.is_authorization_error
