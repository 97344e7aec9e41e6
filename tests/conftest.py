"""Shared pytest fixtures and configuration."""

import json
import tempfile
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from cloud_agent.settings import (
    CollectorSettings,
    DestinationMetric,
    DestinationSettings,
    MetricDefinition,
    ProviderMetric,
)
from cloud_agent.submission import MetricBuffer


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_account_data():
    """Minimal valid account configuration, as read from a file."""
    return {
        "id": "123456789012",
        "aws": {"access_key_id": "AKIATEST", "secret_access_key": "secret"},
        "circonus": {"key": "test-api-key"},
        "tags": [{"category": "env", "value": "test"}],
        "regions": [
            {
                "name": "us-east-1",
                "services": [{"namespace": "AWS/EC2"}],
            }
        ],
    }


@pytest.fixture
def account_dir(temp_dir, sample_account_data):
    """Configuration directory with one valid account file."""
    (temp_dir / "account.json").write_text(json.dumps(sample_account_data))
    return temp_dir


@pytest.fixture
def destination_settings():
    return DestinationSettings(api_key="test-api-key")


@pytest.fixture
def metric_definition():
    return MetricDefinition(
        provider=ProviderMetric(name="CPUUtilization", stats=["Average"], units="Percent"),
        destination=DestinationMetric(type="gauge"),
    )


@pytest.fixture
def collector_settings(metric_definition):
    return CollectorSettings(namespace="AWS/RDS", metrics=[metric_definition])


@pytest.fixture
def mock_check():
    """Destination check double which writes to the real buffer."""
    check = Mock()
    check.needs_refresh = False
    check.metric_name.side_effect = lambda name, tags: name
    check.write_metric_sample.side_effect = (
        lambda buffer, name, metric_type, value, ts=None: buffer.write_sample(
            name, metric_type, value, ts
        )
    )
    return check


@pytest.fixture
def buffer():
    return MetricBuffer()


@pytest.fixture
def shutdown_event():
    return threading.Event()


@pytest.fixture
def mock_api():
    """Provider metrics API double."""
    api = Mock()
    api.get_metric_statistics.return_value = []
    api.describe_instances.return_value = []
    return api


@pytest.fixture
def sample_gcp_project_data():
    """Minimal valid GCP project configuration, as read from a file."""
    return {
        "id": "my-project",
        "gcp": {"credentials_file": "service-account.json"},
        "circonus": {"key": "test-api-key"},
        "tags": [{"category": "env", "value": "test"}],
    }


@pytest.fixture
def gcp_dir(temp_dir, sample_gcp_project_data):
    """GCP configuration directory with one valid project file."""
    conf_dir = temp_dir / "gcp.d"
    conf_dir.mkdir()
    (conf_dir / "project.json").write_text(json.dumps(sample_gcp_project_data))
    return conf_dir
