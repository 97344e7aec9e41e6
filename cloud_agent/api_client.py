"""HTTP client for the destination management API."""

import json
import logging
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

import requests

from cloud_agent.constants import CONNECTION_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


class APIError(requests.RequestException):
    """Exception raised when the management API returns an error response."""


class DestinationAPI:
    """Client for check bundle and broker operations on the management API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        api_app: str,
        ca_file: Path | None = None,
        connection_timeout: int = CONNECTION_TIMEOUT,
    ):
        """Initialize the management API client.

        Args:
            api_url: Base URL of the API (e.g. https://api.circonus.com/v2/)
            api_key: API token
            api_app: Application name the token is registered for
            ca_file: CA bundle to verify the API certificate with, default system CAs
            connection_timeout: HTTP request timeout in seconds
        """
        if not api_key:
            raise ValueError("invalid API key (empty)")
        self.api_url = api_url if api_url.endswith("/") else api_url + "/"
        self.api_key = api_key
        self.api_app = api_app
        self.ca_file = ca_file
        self.connection_timeout = connection_timeout

    def _url(self, path: str) -> str:
        return urljoin(self.api_url, path.lstrip("/"))

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {
            "X-Circonus-Auth-Token": self.api_key,
            "X-Circonus-App-Name": self.api_app,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        url = self._url(path)

        with requests.Session() as s:
            s.headers.update(headers)
            if self.ca_file is not None:
                s.verify = str(self.ca_file)
            logger.debug("%s %s", method, url)
            response = s.request(
                method, url, timeout=self.connection_timeout, **kwargs
            )

        if not response.ok:
            logger.error(
                "API request %s %s failed, response: %d: %s",
                method,
                url,
                response.status_code,
                response.text,
            )
            raise APIError(
                f"API request {method} {path} failed with response code:"
                f" {response.status_code} and text: {response.text}"
            )

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise APIError(
                f"API response for {method} {path} is not JSON: {response.text}"
            ) from e

    def get(self, path: str, params: dict[str, str] | None = None) -> Any:
        return self._request("GET", path, params=params)

    def fetch_check_bundle(self, cid: str) -> dict[str, Any]:
        return self.get(cid)

    def search_check_bundles(self, search: str) -> list[dict[str, Any]]:
        return self.get("/check_bundle", params={"search": search})

    def create_check_bundle(self, config: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/check_bundle", json=config)

    def fetch_broker(self, cid: str) -> dict[str, Any]:
        return self.get(cid)
