"""
HTTP client for the tours backend, as used by a device.

All calls are bounded by a timeout; failures surface as ``TourFetchError`` or
``UploadError`` so callers never see ``requests`` exceptions directly.
"""

import logging
from typing import Any, Optional
from urllib.parse import urljoin

import requests
from django.conf import settings

from .constants import CONNECTIVITY_TIMEOUT, UPLOAD_TIMEOUT
from .exceptions import TourFetchError, UploadError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 10


class TourBackendClient:
    def __init__(self, base_url: Optional[str] = None, token: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or settings.OFFLINE_BACKEND_URL).rstrip("/") + "/"
        self.session = session or requests.Session()
        token = token if token is not None else getattr(settings, "OFFLINE_BACKEND_TOKEN", "")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def fetch_tour_bundle(self, tour_id: Any) -> dict[str, Any]:
        """
        Tour, floor plans (with ``image_url``) and hotspots.

        Raises:
            TourFetchError: network failure or non-2xx answer
        """
        try:
            response = self.session.get(self.url(f"api/tours/{tour_id}/bundle/"), timeout=FETCH_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise TourFetchError(f"Could not load tour {tour_id}: {e}") from e

    def fetch_image(self, url: str) -> bytes:
        try:
            response = self.session.get(url, timeout=FETCH_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TourFetchError(f"Could not download {url}: {e}") from e
        return response.content

    def upload_photo(self, photo) -> dict[str, Any]:
        """
        Send one pending photo.

        Returns:
            The backend answer, including the new ``photoId``

        Raises:
            UploadError: network failure or rejection by the backend
        """
        data = {
            "hotspot_id": photo.hotspot_id,
            "tour_id": photo.tour_id,
            "tenant_id": photo.tenant_id,
            "filename": photo.filename,
            "capture_date": photo.capture_date.isoformat(),
        }
        files = {"photo": (photo.filename, bytes(photo.payload), "application/octet-stream")}
        try:
            response = self.session.post(self.url("api/photos/"), data=data, files=files, timeout=UPLOAD_TIMEOUT)
        except requests.RequestException as e:
            raise UploadError(f"Upload of {photo.filename} failed: {e}") from e

        if not response.ok:
            try:
                message = response.json().get("error", response.reason)
            except (ValueError, AttributeError):
                message = response.reason
            raise UploadError(f"Upload of {photo.filename} rejected ({response.status_code}): {message}")

        # A portal or proxy page can answer 200 on behalf of the backend.
        try:
            body = response.json()
        except ValueError as e:
            raise UploadError(f"Upload of {photo.filename} got a non-JSON answer: {e}") from e
        if not isinstance(body, dict):
            raise UploadError(f"Upload of {photo.filename} got an unexpected answer: {body!r}")
        return body


class ConnectivityProbe:
    """Reachability of the backend, measured against its liveness endpoint."""

    def __init__(self, client: TourBackendClient, timeout: float = CONNECTIVITY_TIMEOUT):
        self.client = client
        self.timeout = timeout

    def is_online(self) -> bool:
        try:
            response = self.client.session.get(self.client.url("health/liveness/"), timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug(f"Backend unreachable: {e}")
            return False
        return response.status_code == 200
