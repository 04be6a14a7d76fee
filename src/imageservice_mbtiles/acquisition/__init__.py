"""Remote image service access for imageservice_mbtiles."""

from imageservice_mbtiles.acquisition.base import ImageService
from imageservice_mbtiles.acquisition.imageservice import (
    Deadline,
    ImageServiceClient,
    ImageServiceError,
    ImageServiceResponseError,
    ImageServiceTimeout,
)

__all__ = [
    "Deadline",
    "ImageService",
    "ImageServiceClient",
    "ImageServiceError",
    "ImageServiceResponseError",
    "ImageServiceTimeout",
]
