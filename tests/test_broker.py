"""Unit tests for broker module."""

import ssl
from pathlib import Path
from unittest.mock import Mock

import pytest
from pytest_mock import MockerFixture

from cloud_agent.broker import (
    BrokerError,
    broker_cn,
    fetch_ca_certificate,
    resolve_broker_tls,
    uses_public_certificate,
)

BROKER = {
    "_cid": "/broker/1234",
    "_details": [
        {"ipaddress": "10.0.0.1", "cn": "broker-a.example.com"},
        {"ipaddress": "10.0.0.2", "cn": "broker-b.example.com"},
    ],
}


class TestBrokerCN:
    """Tests for the broker common name lookup."""

    def test_hostname(self):
        url = "https://trap.example.com:43191/module/httptrap/uuid/secret"

        assert broker_cn(BROKER, url) == "trap.example.com"

    def test_ip_matches_detail(self):
        url = "https://10.0.0.2:43191/module/httptrap/uuid/secret"

        assert broker_cn(BROKER, url) == "broker-b.example.com"

    def test_ip_without_match(self):
        with pytest.raises(BrokerError) as exc_info:
            broker_cn(BROKER, "https://10.9.9.9:43191/module/httptrap/uuid/secret")

        assert "10.9.9.9" in str(exc_info.value)

    def test_no_host(self):
        with pytest.raises(BrokerError):
            broker_cn(BROKER, "not a url")


class TestResolveBrokerTLS:
    """Tests for broker TLS resolution."""

    def test_public_endpoint(self):
        api = Mock()
        url = "https://api.circonus.com/module/httptrap/uuid/secret"

        assert uses_public_certificate(url)
        assert resolve_broker_tls(api, BROKER, url) is None
        api.get.assert_not_called()

    def test_ca_from_api(self, mocker: MockerFixture):
        """Test that the CA is fetched from the API when no CA file is configured."""
        context = mocker.Mock(spec=ssl.SSLContext)
        create_context = mocker.patch(
            "cloud_agent.broker.ssl.create_default_context", return_value=context
        )
        api = Mock()
        api.get.return_value = {"contents": "-----BEGIN CERTIFICATE-----"}

        tls = resolve_broker_tls(
            api, BROKER, "https://10.0.0.1:43191/module/httptrap/uuid/secret"
        )

        api.get.assert_called_once_with("/pki/ca.crt")
        create_context.assert_called_once_with(
            cafile=None, cadata="-----BEGIN CERTIFICATE-----"
        )
        assert tls.ssl_context is context
        assert tls.server_name == "broker-a.example.com"
        assert context.minimum_version == ssl.TLSVersion.TLSv1_2

    def test_ca_file(self, mocker: MockerFixture):
        create_context = mocker.patch(
            "cloud_agent.broker.ssl.create_default_context",
            return_value=mocker.Mock(spec=ssl.SSLContext),
        )
        api = Mock()

        tls = resolve_broker_tls(
            api,
            BROKER,
            "https://trap.example.com/module/httptrap/uuid/secret",
            ca_file=Path("/etc/ca.pem"),
        )

        api.get.assert_not_called()
        create_context.assert_called_once_with(cafile="/etc/ca.pem", cadata=None)
        assert tls.server_name == "trap.example.com"

    def test_missing_ca_file(self, temp_dir):
        with pytest.raises(BrokerError) as exc_info:
            resolve_broker_tls(
                Mock(),
                BROKER,
                "https://trap.example.com/module/httptrap/uuid/secret",
                ca_file=temp_dir / "missing.pem",
            )

        assert "unable to load broker CA certificate" in str(exc_info.value)

    def test_ca_response_without_contents(self):
        api = Mock()
        api.get.return_value = {"code": "x"}

        with pytest.raises(BrokerError):
            fetch_ca_certificate(api)
