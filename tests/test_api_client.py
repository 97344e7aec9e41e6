"""Unit tests for api_client module."""

import json

import pytest
from pytest_mock import MockerFixture

from cloud_agent.api_client import APIError, DestinationAPI


class TestDestinationAPI:
    """Tests for the DestinationAPI class."""

    @pytest.fixture
    def api(self):
        return DestinationAPI(
            api_url="https://api.example.com/v2",
            api_key="test-key",
            api_app="test-app",
            connection_timeout=12,
        )

    @pytest.fixture
    def mock_session(self, mocker: MockerFixture):
        mock_session = mocker.Mock()
        mock_session.headers = {}
        mock_session_class = mocker.patch("cloud_agent.api_client.requests.Session")
        mock_session_class.return_value.__enter__.return_value = mock_session
        return mock_session

    def _response(self, mocker: MockerFixture, status_code=200, body=None):
        response = mocker.Mock()
        response.status_code = status_code
        response.ok = status_code < 400
        response.text = json.dumps(body)
        response.json.return_value = body
        return response

    def test_empty_key(self):
        with pytest.raises(ValueError):
            DestinationAPI(api_url="https://api.example.com/v2/", api_key="", api_app="x")

    def test_fetch_check_bundle(self, mocker: MockerFixture, api, mock_session):
        """Test fetching a bundle by cid, with auth headers set on the session."""
        mock_session.request.return_value = self._response(
            mocker, body={"_cid": "/check_bundle/123"}
        )

        bundle = api.fetch_check_bundle("/check_bundle/123")

        assert bundle == {"_cid": "/check_bundle/123"}
        args, kwargs = mock_session.request.call_args
        assert args == ("GET", "https://api.example.com/v2/check_bundle/123")
        assert kwargs["timeout"] == 12
        assert mock_session.headers["X-Circonus-Auth-Token"] == "test-key"
        assert mock_session.headers["X-Circonus-App-Name"] == "test-app"
        assert mock_session.headers["Accept"] == "application/json"

    def test_search_check_bundles(self, mocker: MockerFixture, api, mock_session):
        mock_session.request.return_value = self._response(mocker, body=[])

        assert api.search_check_bundles('(active:1)(host:x)') == []
        kwargs = mock_session.request.call_args[1]
        assert kwargs["params"] == {"search": "(active:1)(host:x)"}

    def test_create_check_bundle(self, mocker: MockerFixture, api, mock_session):
        mock_session.request.return_value = self._response(
            mocker, body={"_cid": "/check_bundle/1"}
        )

        api.create_check_bundle({"type": "httptrap"})

        args, kwargs = mock_session.request.call_args
        assert args == ("POST", "https://api.example.com/v2/check_bundle")
        assert kwargs["json"] == {"type": "httptrap"}

    def test_error_response(self, mocker: MockerFixture, api, mock_session):
        mock_session.request.return_value = self._response(
            mocker, status_code=403, body={"code": "403", "message": "forbidden"}
        )

        with pytest.raises(APIError) as exc_info:
            api.fetch_broker("/broker/1")

        assert "403" in str(exc_info.value)
        assert "forbidden" in str(exc_info.value)

    def test_non_json_response(self, mocker: MockerFixture, api, mock_session):
        response = self._response(mocker)
        response.text = "<html>"
        response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
        mock_session.request.return_value = response

        with pytest.raises(APIError) as exc_info:
            api.get("/pki/ca.crt")

        assert "not JSON" in str(exc_info.value)

    def test_ca_file(self, mocker: MockerFixture, mock_session, temp_dir):
        api = DestinationAPI(
            api_url="https://api.example.com/v2/",
            api_key="k",
            api_app="a",
            ca_file=temp_dir / "ca.pem",
        )
        mock_session.request.return_value = self._response(mocker, body={})

        api.get("/broker/1")

        assert mock_session.verify == str(temp_dir / "ca.pem")
