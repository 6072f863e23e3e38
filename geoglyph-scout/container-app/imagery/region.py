"""
Point + buffer -> geographic bounding box.

Longitude offsets are widened by 1/cos(latitude) to correct for meridian
convergence; latitudes whose cosine falls below POLE_COSINE_EPSILON are
rejected instead of producing an infinite offset. The resulting box must
lie inside [-180, 180] x [-90, 90]; anything else raises DomainError.
"""

import logging
import math
from dataclasses import dataclass
from typing import List

import numpy as np

from errors import DomainError, InvalidInputError

logger = logging.getLogger(__name__)

METERS_PER_DEGREE = 111320.0
POLE_COSINE_EPSILON = 1e-6


@dataclass(frozen=True)
class ImageRegion:
    """Axis-aligned bounding box in EPSG:4326 degrees around a buffered point."""

    west: float
    south: float
    east: float
    north: float
    center_lat: float
    center_lon: float
    buffer_m: float

    @property
    def lat_offset(self) -> float:
        return (self.north - self.south) / 2

    @property
    def lon_offset(self) -> float:
        return (self.east - self.west) / 2

    @property
    def bbox(self) -> List[float]:
        """[west, south, east, north], the order STAC and GeoJSON use."""
        return [self.west, self.south, self.east, self.north]

    def to_polygon_coordinates(self) -> List[List[List[float]]]:
        """Closed, counter-clockwise GeoJSON ring starting at the top-left corner."""
        return [[
            [self.west, self.north],
            [self.west, self.south],
            [self.east, self.south],
            [self.east, self.north],
            [self.west, self.north],
        ]]


def validate_coordinates(latitude: float, longitude: float) -> None:
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidInputError(f"Coordinates must be finite numbers, got ({latitude}, {longitude})")
    if not -90 <= latitude <= 90:
        raise InvalidInputError(f"Invalid latitude: {latitude}")
    if not -180 <= longitude <= 180:
        raise InvalidInputError(f"Invalid longitude: {longitude}")


def region_from_point(latitude: float, longitude: float, buffer_m: float) -> ImageRegion:
    """Calculate the bounding box covering ``buffer_m`` metres on each side of a point.

    :param latitude: Center latitude in decimal degrees, [-90, 90]
    :param longitude: Center longitude in decimal degrees, [-180, 180]
    :param buffer_m: Half-width of the box in metres, must be positive
    :raises InvalidInputError: for out-of-range coordinates or a non-positive buffer
    :raises DomainError: when the latitude is too close to a pole for a usable longitude span,
        or the box would extend past a pole or across the antimeridian
    """
    validate_coordinates(latitude, longitude)
    if not math.isfinite(buffer_m) or buffer_m <= 0:
        raise InvalidInputError(f"Buffer must be a positive number of metres, got {buffer_m}")

    cos_lat = float(np.cos(np.radians(latitude)))
    if abs(cos_lat) < POLE_COSINE_EPSILON:
        raise DomainError(
            f"Latitude {latitude} is too close to a pole to compute a longitude span"
        )

    lat_delta = buffer_m / METERS_PER_DEGREE
    lon_delta = lat_delta / cos_lat

    if lon_delta > 180:
        raise DomainError(
            f"Latitude {latitude} is too close to a pole: a {buffer_m} m buffer spans "
            f"{2 * lon_delta:.1f} degrees of longitude"
        )

    region = ImageRegion(
        west=longitude - lon_delta,
        south=latitude - lat_delta,
        east=longitude + lon_delta,
        north=latitude + lat_delta,
        center_lat=latitude,
        center_lon=longitude,
        buffer_m=buffer_m,
    )

    if region.south < -90 or region.north > 90:
        raise DomainError(
            f"A {buffer_m} m buffer around latitude {latitude} extends past the pole "
            f"(south={region.south:.4f}, north={region.north:.4f})"
        )
    # Boxes crossing the antimeridian are rejected, not split
    if region.west < -180 or region.east > 180:
        raise DomainError(
            f"A {buffer_m} m buffer around longitude {longitude} crosses the antimeridian "
            f"(west={region.west:.4f}, east={region.east:.4f})"
        )
    return region
