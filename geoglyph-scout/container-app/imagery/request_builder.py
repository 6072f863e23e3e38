"""
Imagery Request Builder

Turns an ImageRegion into a single declarative ImageryRequest describing:
1. The filter chain (spatial bound, inclusive date range, cloud threshold)
2. The reduction policy (per-pixel median composite or least-cloudy scene)
3. The RGB band selection and display range used to rescale to 8 bit
4. The pixel grid and its affine transform

The request renders itself into an Earth Engine expression graph
(to_expression) and a PixelGrid (to_pixel_grid); the client never builds
expressions on its own.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Tuple, Union

from errors import InvalidInputError
from imagery.region import ImageRegion

logger = logging.getLogger(__name__)


# ============================================================================
# DEFAULTS (Sentinel-2 surface reflectance true colour)
# ============================================================================

DEFAULT_COLLECTION = "COPERNICUS/S2_SR_HARMONIZED"
DEFAULT_START_DATE = "2023-01-01"
DEFAULT_END_DATE = "2024-12-31"
DEFAULT_CLOUD_PROPERTY = "CLOUDY_PIXEL_PERCENTAGE"
DEFAULT_MAX_CLOUD_PCT = 20.0
DEFAULT_BANDS = ("B4", "B3", "B2")
DEFAULT_DISPLAY_RANGE = (0.0, 3000.0)
DEFAULT_DIMENSIONS = 640
DEFAULT_FILE_FORMAT = "PNG"
DEFAULT_CRS = "EPSG:4326"

# Human-readable labels for the collections the UI may ask for
SOURCE_LABELS: Dict[str, str] = {
    "COPERNICUS/S2_SR_HARMONIZED": "Sentinel-2 (Google Earth Engine)",
    "COPERNICUS/S2_HARMONIZED": "Sentinel-2 TOA (Google Earth Engine)",
    "LANDSAT/LC09/C02/T1_L2": "Landsat 9 (Google Earth Engine)",
    "LANDSAT/LC08/C02/T1_L2": "Landsat 8 (Google Earth Engine)",
}

FILE_FORMATS = {"PNG": "image/png", "JPEG": "image/jpeg"}


class ReductionPolicy(str, Enum):
    MEDIAN = "median"
    LEAST_CLOUDY = "least_cloudy"

    @classmethod
    def parse(cls, value: Union[str, "ReductionPolicy"]) -> "ReductionPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            options = ", ".join(p.value for p in cls)
            raise InvalidInputError(f"Unknown reduction policy '{value}'. Use one of: {options}")


@dataclass(frozen=True)
class AffineTransform:
    """Pixel (col, row) -> map (x, y): x = scale_x*col + shear_x*row + translate_x, etc."""

    scale_x: float
    shear_x: float
    translate_x: float
    shear_y: float
    scale_y: float
    translate_y: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "scaleX": self.scale_x,
            "shearX": self.shear_x,
            "translateX": self.translate_x,
            "shearY": self.shear_y,
            "scaleY": self.scale_y,
            "translateY": self.translate_y,
        }


def _constant(value: Any) -> Dict[str, Any]:
    return {"constantValue": value}


def _invoke(function_name: str, **arguments: Any) -> Dict[str, Any]:
    return {"functionInvocationValue": {"functionName": function_name, "arguments": arguments}}


def _as_date(value: Union[str, date], label: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidInputError(f"Invalid {label} '{value}', expected YYYY-MM-DD")


@dataclass(frozen=True)
class ImageryRequest:
    """Everything needed to render one georeferenced RGB thumbnail."""

    region: ImageRegion
    collection: str
    start_date: date
    end_date: date  # inclusive
    cloud_property: str
    max_cloud_pct: float
    policy: ReductionPolicy
    bands: Tuple[str, str, str]
    display_min: float
    display_max: float
    width: int
    height: int
    file_format: str
    transform: AffineTransform
    crs: str = DEFAULT_CRS

    @property
    def source_label(self) -> str:
        return SOURCE_LABELS.get(self.collection, f"{self.collection} (Google Earth Engine)")

    @property
    def mime_type(self) -> str:
        return FILE_FORMATS[self.file_format]

    def _geometry(self) -> Dict[str, Any]:
        return _invoke(
            "GeometryConstructors.Polygon",
            coordinates=_constant(self.region.to_polygon_coordinates()),
            geodesic=_constant(False),
        )

    def _filtered_collection(self) -> Dict[str, Any]:
        collection = _invoke("ImageCollection.load", id=_constant(self.collection))
        filters = [
            _invoke("Filter.intersects", leftField=_constant(".geo"), rightValue=self._geometry()),
            _invoke(
                "Filter.dateRangeContains",
                # Earth Engine date ranges exclude their end; advance a day to keep end_date inclusive
                leftValue=_invoke(
                    "DateRange",
                    start=_constant(self.start_date.isoformat()),
                    end=_constant((self.end_date + timedelta(days=1)).isoformat()),
                ),
                rightField=_constant("system:time_start"),
            ),
            _invoke(
                "Filter.lessThan",
                leftField=_constant(self.cloud_property),
                rightValue=_constant(self.max_cloud_pct),
            ),
        ]
        for flt in filters:
            collection = _invoke("Collection.filter", collection=collection, filter=flt)
        return collection

    def _reduced_image(self) -> Dict[str, Any]:
        collection = self._filtered_collection()
        if self.policy is ReductionPolicy.LEAST_CLOUDY:
            least_cloudy = _invoke(
                "Collection.limit",
                collection=collection,
                limit=_constant(1),
                key=_constant(self.cloud_property),
                ascending=_constant(True),
            )
            return _invoke("ImageCollection.mosaic", collection=least_cloudy)
        return _invoke("reduce.median", collection=collection)

    def to_expression(self) -> Dict[str, Any]:
        """Earth Engine expression graph producing the visualised 8-bit RGB image."""
        selected = _invoke(
            "Image.select",
            input=self._reduced_image(),
            bandSelectors=_constant(list(self.bands)),
        )
        visualized = _invoke(
            "Image.visualize",
            image=selected,
            min=_constant(self.display_min),
            max=_constant(self.display_max),
        )
        return {"result": "0", "values": {"0": visualized}}

    def to_pixel_grid(self) -> Dict[str, Any]:
        """PixelGrid in EPSG:4326.

        The transform keeps its metre scale; on the wire the scale is
        expressed in degrees so that width*scaleX spans east-west and
        height*scaleY spans north-south exactly.
        """
        wire_transform = AffineTransform(
            scale_x=(self.region.east - self.region.west) / self.width,
            shear_x=0.0,
            translate_x=self.transform.translate_x,
            shear_y=0.0,
            scale_y=-(self.region.north - self.region.south) / self.height,
            translate_y=self.transform.translate_y,
        )
        return {
            "dimensions": {"width": self.width, "height": self.height},
            "affineTransform": wire_transform.to_dict(),
            "crsCode": self.crs,
        }

    def to_body(self) -> Dict[str, Any]:
        """Request body shared by image:computePixels and thumbnails.create."""
        return {
            "expression": self.to_expression(),
            "fileFormat": self.file_format,
            "grid": self.to_pixel_grid(),
        }

    def describe(self) -> Dict[str, Any]:
        """Compact summary for logs and API responses."""
        return {
            "collection": self.collection,
            "dates": [self.start_date.isoformat(), self.end_date.isoformat()],
            "max_cloud_pct": self.max_cloud_pct,
            "policy": self.policy.value,
            "bands": list(self.bands),
            "dimensions": f"{self.width}x{self.height}",
            "bbox": [round(v, 6) for v in self.region.bbox],
        }


def pixel_transform(region: ImageRegion, width: int, height: int) -> AffineTransform:
    """Metre-per-pixel transform anchored at the region's top-left corner.

    Rows run top-down while latitude runs north-up, hence the negative
    vertical scale.
    """
    span_m = 2 * region.buffer_m
    return AffineTransform(
        scale_x=span_m / width,
        shear_x=0.0,
        translate_x=region.west,
        shear_y=0.0,
        scale_y=-span_m / height,
        translate_y=region.north,
    )


def build_imagery_request(
    region: ImageRegion,
    collection: str = DEFAULT_COLLECTION,
    start_date: Union[str, date] = DEFAULT_START_DATE,
    end_date: Union[str, date] = DEFAULT_END_DATE,
    max_cloud_pct: float = DEFAULT_MAX_CLOUD_PCT,
    bands: Tuple[str, ...] = DEFAULT_BANDS,
    width: int = DEFAULT_DIMENSIONS,
    height: int = DEFAULT_DIMENSIONS,
    policy: Union[str, ReductionPolicy] = ReductionPolicy.MEDIAN,
    display_range: Tuple[float, float] = DEFAULT_DISPLAY_RANGE,
    cloud_property: str = DEFAULT_CLOUD_PROPERTY,
    file_format: str = DEFAULT_FILE_FORMAT,
) -> ImageryRequest:
    """Validate parameters and assemble an ImageryRequest for ``region``."""
    if not collection:
        raise InvalidInputError("An image collection id is required")

    start = _as_date(start_date, "start date")
    end = _as_date(end_date, "end date")
    if start > end:
        raise InvalidInputError(f"Start date {start} is after end date {end}")

    if not 0 < max_cloud_pct <= 100:
        raise InvalidInputError(f"Cloud threshold must be in (0, 100], got {max_cloud_pct}")

    bands = tuple(bands)
    if len(bands) != 3 or not all(bands):
        raise InvalidInputError(f"Exactly three bands are required for RGB, got {list(bands)}")

    if width <= 0 or height <= 0:
        raise InvalidInputError(f"Image dimensions must be positive, got {width}x{height}")

    display_min, display_max = (float(v) for v in display_range)
    if display_min >= display_max:
        raise InvalidInputError(f"Display range min {display_min} must be below max {display_max}")

    file_format = file_format.upper()
    if file_format not in FILE_FORMATS:
        raise InvalidInputError(f"Unsupported file format '{file_format}'")

    request = ImageryRequest(
        region=region,
        collection=collection,
        start_date=start,
        end_date=end,
        cloud_property=cloud_property,
        max_cloud_pct=float(max_cloud_pct),
        policy=ReductionPolicy.parse(policy),
        bands=bands,
        display_min=display_min,
        display_max=display_max,
        width=int(width),
        height=int(height),
        file_format=file_format,
        transform=pixel_transform(region, int(width), int(height)),
    )
    logger.debug(f"[SAT] Built imagery request: {request.describe()}")
    return request
