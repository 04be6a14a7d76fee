"""Protocol definitions for remote imagery sources."""

from __future__ import annotations

from typing import Optional, Protocol

from imageservice_mbtiles.core.models import BoundingBox, ExportImageInput, ExportImageOutput


class ImageService(Protocol):
    """Interface the fetch workers and extent resolver depend on."""

    def resolve_extent(self, *, timeout: Optional[float] = None) -> BoundingBox:
        """Return the service's full coverage in WGS84."""

    def export_image(
        self,
        request: ExportImageInput,
        *,
        timeout: Optional[float] = None,
    ) -> ExportImageOutput:
        """Render one image and describe where its bytes can be found."""

    def fetch_image(self, output: ExportImageOutput, *, timeout: Optional[float] = None) -> bytes:
        """Return the bytes referenced by an export result."""
