"""
Imagery Package for Geoglyph Scout Container App

Converts a candidate point into a georeferenced Earth Engine request and
fetches the rendered thumbnail:
- region: point + buffer -> bounding box (cosine-corrected longitude span)
- request_builder: declarative ImageryRequest (filters, reduction, bands, pixel grid)
- credentials: memoised service-account bearer token
- earth_engine_client: computePixels / thumbnail submission, normalised to bytes
"""

from .region import ImageRegion, region_from_point
from .request_builder import AffineTransform, ImageryRequest, ReductionPolicy, build_imagery_request
from .credentials import ServiceAccountTokenCache
from .earth_engine_client import EarthEngineClient, SatelliteImageResult, fetch_satellite_image

__all__ = [
    "ImageRegion",
    "region_from_point",
    "AffineTransform",
    "ImageryRequest",
    "ReductionPolicy",
    "build_imagery_request",
    "ServiceAccountTokenCache",
    "EarthEngineClient",
    "SatelliteImageResult",
    "fetch_satellite_image",
]
