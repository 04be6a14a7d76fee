"""Client for ESRI ``/ImageServer`` and ``/MapServer`` REST endpoints."""

from __future__ import annotations

import json
import threading
import time
from contextlib import closing
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urljoin

import requests

from imageservice_mbtiles.core.models import (
    WGS84,
    BoundingBox,
    ExportImageInput,
    ExportImageOutput,
    ServiceDetails,
)
from imageservice_mbtiles.logging import get_logger

LOGGER = get_logger(__name__)

USER_AGENT = "imageservice-mbtiles/0.1"
EXTENT_PROBE_SIZE = 512
CHUNK_SIZE = 64 * 1024


class ImageServiceError(RuntimeError):
    """Raised when the remote service cannot satisfy a request."""


class ImageServiceTimeout(ImageServiceError):
    """Raised when a request runs past its deadline."""


class ImageServiceResponseError(ImageServiceError):
    """Raised when the service answers with an error or an unusable payload."""


class ImageServiceClient:
    """Thin wrapper over the metadata and ``exportImage`` operations.

    Sessions are kept per thread so a worker pool can share one client.
    """

    def __init__(self, base_url: str, *, timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._local = threading.local()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers.update({"User-Agent": USER_AGENT})
            self._local.session = session
        return session

    def get_details(self, *, timeout: Optional[float] = None) -> ServiceDetails:
        """Fetch the service metadata document."""

        LOGGER.debug("requesting service details", extra={"endpoint": self._base_url})
        _, body = self._get(self._base_url, params={"f": "json"}, timeout=timeout or self._timeout)
        payload = self._decode_json(body)
        try:
            return ServiceDetails.from_json(payload)
        except ValueError as exc:
            raise ImageServiceResponseError(f"Malformed service details: {exc}") from exc

    def export_image(
        self,
        request: ExportImageInput,
        *,
        timeout: Optional[float] = None,
    ) -> ExportImageOutput:
        """Ask the service to render ``request`` and describe where the image lives."""

        url = f"{self._base_url}/exportImage"
        response, body = self._get(url, params=request.to_params(), timeout=timeout or self._timeout)
        content_type = response.headers.get("Content-Type", "")
        if content_type.startswith("image/"):
            return ExportImageOutput(
                extent=request.bbox,
                image_bytes=body,
                width=request.width,
                height=request.height,
            )

        payload = self._decode_json(body)
        href = payload.get("href")
        if not href:
            raise ImageServiceResponseError("exportImage response is missing href")
        extent_payload = payload.get("extent")
        try:
            extent = BoundingBox.from_json(extent_payload) if extent_payload else None
        except ValueError as exc:
            raise ImageServiceResponseError(f"Malformed export extent: {exc}") from exc
        return ExportImageOutput(
            extent=extent,
            href=urljoin(self._base_url + "/", href),
            width=payload.get("width"),
            height=payload.get("height"),
        )

    def fetch_image(self, output: ExportImageOutput, *, timeout: Optional[float] = None) -> bytes:
        """Return the image bytes referenced by an export result."""

        if output.image_bytes is not None:
            return output.image_bytes
        if not output.href:
            raise ImageServiceResponseError("export result carries neither href nor bytes")
        _, body = self._get(output.href, timeout=timeout or self._timeout)
        return body

    def resolve_extent(self, *, timeout: Optional[float] = None) -> BoundingBox:
        """Return the service's full extent expressed in WGS84.

        Services usually advertise a projected ``fullExtent``; the service
        itself is asked to reproject it by exporting the whole extent once.
        """

        details = self.get_details(timeout=timeout)
        full_extent = details.full_extent
        if full_extent.wkid == WGS84:
            return full_extent
        probe = ExportImageInput(
            bbox=full_extent,
            image_sr=WGS84,
            width=EXTENT_PROBE_SIZE,
            height=EXTENT_PROBE_SIZE,
            format="png",
            pixel_type="U8",
        )
        output = self.export_image(probe, timeout=timeout)
        if output.extent is None:
            raise ImageServiceResponseError("extent probe response is missing extent")
        if output.extent.wkid != WGS84:
            # inline image replies only echo the projected request bbox
            raise ImageServiceResponseError(
                f"extent probe returned wkid {output.extent.wkid}, expected {WGS84}"
            )
        LOGGER.info(
            "resolved service extent",
            extra={
                "source_wkid": full_extent.wkid,
                "bounds": output.extent.as_bounds(),
            },
        )
        return output.extent

    def close(self) -> None:
        session = getattr(self._local, "session", None)
        if session is not None:
            session.close()
            self._local.session = None

    def _get(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        timeout: float,
    ) -> Tuple[requests.Response, bytes]:
        """GET ``url`` and return the response with its body.

        ``timeout`` bounds the whole exchange, not only each socket read, so
        the body is streamed and the deadline checked between chunks.
        """

        deadline = Deadline(timeout)
        try:
            response = self.session.get(url, params=params, timeout=timeout, stream=True)
            with closing(response):
                chunks = []
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    chunks.append(chunk)
                    deadline.remaining()
        except requests.Timeout as exc:
            raise ImageServiceTimeout(f"Request to {url} timed out after {timeout:.1f}s") from exc
        except requests.RequestException as exc:
            raise ImageServiceError(f"Request to {url} failed: {exc}") from exc
        body = b"".join(chunks)
        if response.status_code != 200:
            text = body[:200].decode("utf-8", errors="replace").strip()
            raise ImageServiceResponseError(f"Request to {url} failed: {response.status_code} {text}")
        return response, body

    @staticmethod
    def _decode_json(body: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise ImageServiceResponseError(f"Response is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ImageServiceResponseError("Response JSON is not an object")
        error = payload.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            raise ImageServiceResponseError(f"Service returned an error: {message}")
        return payload


class Deadline:
    """Monotonic deadline shared by one or more round trips."""

    def __init__(self, seconds: float, *, clock=time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        """Seconds left; raises :class:`ImageServiceTimeout` once expired."""

        left = self._expires_at - self._clock()
        if left <= 0:
            raise ImageServiceTimeout("fetch deadline exceeded")
        return left
