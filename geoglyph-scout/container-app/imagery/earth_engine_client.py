"""
Earth Engine REST client.

Submits an ImageryRequest through one of two Earth Engine endpoints and
always returns raw image bytes:

- compute_pixels: POST v1/projects/{project}/image:computePixels
  (body is the image itself, or JSON wrapping it as base64)
- thumbnail:      POST v1/projects/{project}/thumbnails, then
                  GET  v1/{name}:getPixels

One attempt per call; the UI decides whether to retry.
"""

import asyncio
import base64
import binascii
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiohttp
from pydantic import BaseModel, Field

from app_config import AppConfig
from errors import (
    AuthenticationError,
    ConfigurationError,
    DataShapeError,
    InvalidInputError,
    NoDataError,
    UpstreamError,
    UpstreamTimeoutError,
)
from imagery.credentials import ServiceAccountTokenCache
from imagery.region import region_from_point
from imagery.request_builder import ImageryRequest, ReductionPolicy, build_imagery_request

logger = logging.getLogger(__name__)

SUBMISSION_STYLES = ("compute_pixels", "thumbnail")

# JSON keys seen wrapping base64 pixels in computePixels/getPixels responses
_BASE64_PAYLOAD_KEYS = ("data", "imageData", "image", "pixels", "bytes")

DEFAULT_BUFFER_M = 500.0


class Coordinates(BaseModel):
    lat: float
    lon: float


class SatelliteImageResult(BaseModel):
    """Rendered thumbnail ready for the browser."""

    image: str = Field(..., description="data:image/...;base64 URI")
    coordinates: Coordinates
    source: str


def to_data_uri(image_bytes: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode()}"


def decode_image_payload(content_type: str, payload: bytes) -> bytes:
    """Normalise a successful response body into image bytes.

    :raises NoDataError: when the body or the wrapped field is empty
    :raises DataShapeError: when a JSON body carries no decodable image
    """
    if not payload:
        raise NoDataError("Earth Engine returned an empty response body")

    if "json" not in (content_type or "").lower():
        return payload

    try:
        document = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise DataShapeError(f"Earth Engine returned invalid JSON: {e}") from e

    if not isinstance(document, dict):
        raise DataShapeError(f"Expected a JSON object from Earth Engine, got {type(document).__name__}")

    encoded = next((document[k] for k in _BASE64_PAYLOAD_KEYS if k in document), None)
    if encoded is None:
        raise NoDataError(f"Earth Engine response has no image field (keys: {sorted(document)})")
    if not isinstance(encoded, str):
        raise DataShapeError(f"Earth Engine image field is {type(encoded).__name__}, expected base64 text")
    if "base64," in encoded:
        encoded = encoded.split("base64,", 1)[1]
    if not encoded.strip():
        raise NoDataError("Earth Engine returned an empty image field")

    try:
        image_bytes = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DataShapeError(f"Earth Engine image field is not valid base64: {e}") from e
    if not image_bytes:
        raise NoDataError("Earth Engine returned an empty image field")
    return image_bytes


class EarthEngineClient:
    """Authenticated Earth Engine image fetcher."""

    def __init__(
        self,
        token_cache: ServiceAccountTokenCache,
        project: Optional[str],
        api_url: str = "https://earthengine.googleapis.com",
        submission_style: str = "compute_pixels",
        timeout_seconds: float = 60.0,
        session_factory: Optional[Callable[[aiohttp.ClientTimeout], Any]] = None,
    ):
        if not project:
            raise ConfigurationError(
                "Earth Engine project not configured: set EARTH_ENGINE_PROJECT",
                error="Earth Engine credentials not configured",
            )
        if submission_style not in SUBMISSION_STYLES:
            raise ConfigurationError(
                f"Unknown Earth Engine submission style '{submission_style}' (use one of {SUBMISSION_STYLES})"
            )
        self.token_cache = token_cache
        self.project = project
        self.api_url = api_url.rstrip("/")
        self.submission_style = submission_style
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session_factory = session_factory or (lambda timeout: aiohttp.ClientSession(timeout=timeout))

    @classmethod
    def from_config(cls, cfg: AppConfig) -> "EarthEngineClient":
        return cls(
            token_cache=ServiceAccountTokenCache.from_config(cfg),
            project=cfg.earth_engine_project,
            api_url=cfg.earth_engine_api_url,
            submission_style=cfg.earth_engine_submission_style,
            timeout_seconds=cfg.imagery_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _raise_for_status(self, resp, action: str) -> None:
        if resp.status < 400:
            return
        body = await resp.text()
        logger.error(f"[FAIL] Earth Engine {action} error {resp.status}: {body[:300]}")
        if resp.status in (401, 403):
            # Next user-initiated retry performs a fresh token exchange
            self.token_cache.invalidate()
            raise AuthenticationError(
                f"Earth Engine {action} rejected credentials ({resp.status}): {body[:500]}",
                upstream_status=resp.status,
                body=body,
            )
        raise UpstreamError(
            f"Earth Engine {action} failed ({resp.status}): {body[:500]}",
            error="Failed to fetch satellite imagery",
            upstream_status=resp.status,
            body=body,
        )

    async def _compute_pixels(self, session, headers: Dict[str, str], request: ImageryRequest) -> bytes:
        url = f"{self.api_url}/v1/projects/{self.project}/image:computePixels"
        async with session.post(url, headers=headers, json=request.to_body()) as resp:
            await self._raise_for_status(resp, "computePixels")
            payload = await resp.read()
            return decode_image_payload(resp.headers.get("Content-Type", ""), payload)

    async def _thumbnail(self, session, headers: Dict[str, str], request: ImageryRequest) -> bytes:
        url = f"{self.api_url}/v1/projects/{self.project}/thumbnails"
        async with session.post(url, headers=headers, json=request.to_body()) as resp:
            await self._raise_for_status(resp, "thumbnails.create")
            try:
                thumbnail = await resp.json(content_type=None)
            except ValueError as e:
                raise DataShapeError(f"Earth Engine thumbnail response is not JSON: {e}") from e

        name = thumbnail.get("name") if isinstance(thumbnail, dict) else None
        if not name:
            raise DataShapeError(f"Earth Engine thumbnail response has no name: {thumbnail!r}"[:300])

        async with session.get(f"{self.api_url}/v1/{name}:getPixels", headers=headers) as resp:
            await self._raise_for_status(resp, "thumbnails.getPixels")
            payload = await resp.read()
            return decode_image_payload(resp.headers.get("Content-Type", ""), payload)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_image(self, request: ImageryRequest) -> bytes:
        """Render ``request`` and return the encoded image bytes."""
        token = await self.token_cache.get_token_async()
        if not token:
            raise AuthenticationError("No access token available for Earth Engine")
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        start = time.time()
        try:
            async with self._session_factory(self.timeout) as session:
                if self.submission_style == "thumbnail":
                    image_bytes = await self._thumbnail(session, headers, request)
                else:
                    image_bytes = await self._compute_pixels(session, headers, request)
        except asyncio.TimeoutError as e:
            elapsed = time.time() - start
            logger.error(f"[FAIL] Earth Engine request timed out after {elapsed:.1f}s")
            raise UpstreamTimeoutError(f"Earth Engine request timed out after {elapsed:.1f}s") from e
        except aiohttp.ClientError as e:
            logger.error(f"[FAIL] Earth Engine transport error: {e}")
            raise UpstreamError(f"Earth Engine request failed: {e}", error="Failed to fetch satellite imagery") from e

        logger.info(
            f"[SAT] Earth Engine {self.submission_style} returned {len(image_bytes) / 1024:.1f} KB "
            f"in {time.time() - start:.2f}s"
        )
        return image_bytes


async def fetch_satellite_image(
    client: EarthEngineClient,
    latitude: float,
    longitude: float,
    buffer_m: float = DEFAULT_BUFFER_M,
    policy: str = ReductionPolicy.MEDIAN.value,
    **request_options: Any,
) -> SatelliteImageResult:
    """Region -> request -> bytes -> data URI for one candidate point."""
    if latitude is None or longitude is None:
        raise InvalidInputError("Latitude and longitude are required")

    region = region_from_point(latitude, longitude, buffer_m)
    request = build_imagery_request(region, policy=policy, **request_options)
    logger.info(f"[SAT] Fetching imagery for ({latitude:.4f}, {longitude:.4f}): {request.describe()}")

    image_bytes = await client.fetch_image(request)
    return SatelliteImageResult(
        image=to_data_uri(image_bytes, request.mime_type),
        coordinates=Coordinates(lat=latitude, lon=longitude),
        source=request.source_label,
    )
