"""Single-request HTTP transport for the Grist REST API."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional, Tuple
from urllib.parse import urlsplit

import requests

from .config import GristConfig

_LOGGER = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({"GET", "POST", "PATCH", "PUT", "DELETE"})

# Synthetic statuses; real HTTP statuses are always positive.
STATUS_ENCODING_ERROR = -1
STATUS_NETWORK_ERROR = -10
STATUS_TIMEOUT = -11
STATUS_CANCELLED = -12


class Transport:
    """Issue one request against ``{url}/api/{path}`` with a bearer token.

    Network failures never raise: they are returned as a negative status with
    a readable message in place of the body. No request is ever retried.
    """

    def __init__(
        self,
        config: GristConfig,
        *,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_url(self, path: str) -> str:
        if not self.config.url:
            raise ValueError("The Grist URL is not configured")
        if urlsplit(self.config.url).scheme not in ("http", "https"):
            raise ValueError(f"The Grist URL must start with http:// or https://, got {self.config.url!r}")
        return f"{self.config.api_url}/{path.lstrip('/')}"

    def _headers(self, *, json_body: bool = True) -> dict:
        headers = {"Authorization": f"Bearer {self.config.token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _perform(
        self,
        method: str,
        path: str,
        *,
        cancel: Optional[threading.Event],
        json_body: bool = True,
        **kwargs: Any,
    ) -> Tuple[Optional[requests.Response], str, int]:
        verb = method.upper()
        if verb not in ALLOWED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method!r}")
        url = self.build_url(path)

        if cancel is not None and cancel.is_set():
            _LOGGER.debug("Request %s %s cancelled before sending", verb, url)
            return None, f"Request {verb} {url} cancelled", STATUS_CANCELLED

        _LOGGER.debug("Sending %s request to %s", verb, url)
        try:
            response = self.session.request(
                verb,
                url,
                headers=self._headers(json_body=json_body),
                timeout=self.timeout,
                **kwargs,
            )
        except (
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidURL,
        ) as exc:
            raise ValueError(f"Invalid request URL {url}: {exc}") from exc
        except requests.Timeout as exc:
            _LOGGER.warning("Request %s %s timed out after %ss", verb, url, self.timeout)
            return None, f"Timeout sending request {url}: {exc}", STATUS_TIMEOUT
        except requests.RequestException as exc:
            _LOGGER.warning("Request %s %s failed: %s", verb, url, exc)
            return None, f"Error sending request {url}: {exc}", STATUS_NETWORK_ERROR

        _LOGGER.debug("Received %s from %s %s", response.status_code, verb, url)
        return response, "", response.status_code

    def send(
        self,
        method: str,
        path: str,
        body: str = "",
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[str, int]:
        """Send ``body`` and return ``(response_text, status)``."""

        response, message, status = self._perform(
            method, path, cancel=cancel, data=body.encode("utf-8") if body else None
        )
        if response is None:
            return message, status
        return response.text, status

    def download(
        self,
        path: str,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[bytes, str, int]:
        """GET raw content, returning ``(content, content_type, status)``."""

        response, message, status = self._perform("GET", path, cancel=cancel)
        if response is None:
            return message.encode("utf-8"), "", status
        return response.content, response.headers.get("Content-Type", ""), status

    def upload(
        self,
        path: str,
        files: Any,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[str, int]:
        """POST ``files`` as multipart/form-data."""

        response, message, status = self._perform(
            "POST", path, cancel=cancel, json_body=False, files=files
        )
        if response is None:
            return message, status
        return response.text, status


def is_success(status: int) -> bool:
    return 200 <= status < 300


def describe_status(status: int) -> str:
    """Return a short label for synthetic statuses, or the number itself."""

    labels: Mapping[int, str] = {
        STATUS_ENCODING_ERROR: "request could not be encoded",
        STATUS_NETWORK_ERROR: "network error",
        STATUS_TIMEOUT: "timeout",
        STATUS_CANCELLED: "cancelled",
    }
    return labels.get(status, str(status))


__all__ = [
    "ALLOWED_METHODS",
    "STATUS_CANCELLED",
    "STATUS_ENCODING_ERROR",
    "STATUS_NETWORK_ERROR",
    "STATUS_TIMEOUT",
    "Transport",
    "describe_status",
    "is_success",
]
