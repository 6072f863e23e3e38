# FastAPI Geoglyph Scout API
# Serves candidate points, Sentinel-2 thumbnails from Earth Engine, and GPT-4o
# archaeological plausibility verdicts to the map UI.

from fastapi import FastAPI, APIRouter, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import time
import traceback
from datetime import datetime
from typing import Optional

from app_config import app_cfg
from errors import GeoglyphScoutError, InvalidInputError
from candidate_points import load_candidate_points
from imagery import EarthEngineClient, fetch_satellite_image
from imagery.earth_engine_client import DEFAULT_BUFFER_M
from agents import get_vision_agent
from agents.geoglyph_vision_agent import check_image_reference

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(title="Geoglyph Scout API", version="1.0.0")

cors_origins = list(app_cfg.cors_origins)
logger.info(f"[LOCK] CORS configured for origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount the built map UI if it ships alongside the container app
static_dir = os.path.join(os.path.dirname(__file__), "static")
if os.path.exists(static_dir):
    from fastapi.staticfiles import StaticFiles
    app.mount("/static", StaticFiles(directory=static_dir), name="static")
    logger.info(f"[OK] Mounted static files from: {static_dir}")


# ============================================================================
# IMAGERY CLIENT (built on first use; credentials checked then, not at import)
# ============================================================================

_earth_engine_client: Optional[EarthEngineClient] = None


def get_earth_engine_client() -> EarthEngineClient:
    """Get the process-wide EarthEngineClient (and its token cache)."""
    global _earth_engine_client
    if _earth_engine_client is None:
        _earth_engine_client = EarthEngineClient.from_config(app_cfg)
        logger.info(
            f"[OK] Earth Engine client ready: project={_earth_engine_client.project} "
            f"style={_earth_engine_client.submission_style}"
        )
    return _earth_engine_client


def _parse_float(value: str, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")


# ============================================================================
# ERROR ENVELOPES
# ============================================================================

@app.exception_handler(GeoglyphScoutError)
async def geoglyph_error_handler(request: Request, exc: GeoglyphScoutError):
    """Known failures -> {"error", "details"} with the error's status."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(f"[FAIL] {request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"[FAIL] {request.method} {request.url.path} -> 400 invalid request: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": str(exc.errors())})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {str(exc)}")
    logger.error(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "details": str(exc),
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# ============================================================================
# ROUTES (served at / and under /api)
# ============================================================================

router = APIRouter()


@router.get("/satellite")
async def get_satellite_image(
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    buffer: Optional[str] = None,
    policy: Optional[str] = None,
):
    """
    Fetch a true-colour Sentinel-2 thumbnail around a point.

    Query: lat, lon (degrees, required), buffer (metres, default 500),
    policy ("median" composite or "least_cloudy" scene, default median).
    Returns {image: data URI, coordinates: {lat, lon}, source}.
    """
    request_id = f"sat-{datetime.utcnow().timestamp()}"

    if not lat or not lon:
        raise InvalidInputError(
            "Query parameters 'lat' and 'lon' are required",
            error="Latitude and longitude are required",
        )

    latitude = _parse_float(lat, "lat")
    longitude = _parse_float(lon, "lon")
    buffer_m = _parse_float(buffer, "buffer") if buffer else DEFAULT_BUFFER_M

    logger.info(f"[SAT] [{request_id}] Imagery requested at ({latitude}, {longitude}) buffer={buffer_m}m")
    start = time.time()

    client = get_earth_engine_client()
    result = await fetch_satellite_image(
        client,
        latitude,
        longitude,
        buffer_m=buffer_m,
        policy=policy or "median",
    )

    logger.info(f"[SAT] [{request_id}] [OK] Imagery ready ({time.time() - start:.2f}s)")
    return result.model_dump()


@router.post("/validate")
async def validate_image(request: Request):
    """
    Ask the vision model whether an image shows a plausible geoglyph.

    Request body: {"imageUrl": "data:image/png;base64,..."}
    Returns {isValid, confidence, analysis, features}.
    """
    request_id = f"vision-{datetime.utcnow().timestamp()}"

    try:
        body = await request.json()
    except ValueError:
        raise InvalidInputError("Request body must be JSON", error="Image URL is required")

    image_url = body.get("imageUrl") if isinstance(body, dict) else None
    check_image_reference(image_url)

    logger.info(f"[EYE] [{request_id}] Validation requested ({len(image_url) / 1024:.1f} KB image reference)")
    start = time.time()

    vision_agent = get_vision_agent()
    verdict = await vision_agent.classify(image_url)

    logger.info(f"[EYE] [{request_id}] [OK] Validation completed ({time.time() - start:.2f}s)")
    return verdict.to_response()


@router.get("/candidates")
async def list_candidates():
    """Candidate points for the map markers; malformed rows are skipped."""
    try:
        points = load_candidate_points(app_cfg.candidates_csv)
    except FileNotFoundError as e:
        raise GeoglyphScoutError(str(e), error="Candidate table not found", status_code=404)
    return [point.model_dump() for point in points]


@router.get("/health")
async def health_check():
    """Lightweight health check: configuration only, no token exchange or model calls."""
    checks = {
        "earth_engine": {
            "status": "configured" if app_cfg.earth_engine_configured and app_cfg.earth_engine_project else "misconfigured",
            "project": app_cfg.earth_engine_project,
            "submission_style": app_cfg.earth_engine_submission_style,
        },
        "vision_model": {
            "status": "configured" if app_cfg.vision_configured else "misconfigured",
            "provider": "azure_openai" if app_cfg.use_azure_openai else "openai",
        },
    }
    all_healthy = all(c["status"] == "configured" for c in checks.values())
    overall = "healthy" if all_healthy else "degraded"
    logger.info(
        f"[BLDG] Health: {overall} | earth_engine={checks['earth_engine']['status']} "
        f"vision={checks['vision_model']['status']}"
    )
    return JSONResponse(
        content={
            "status": overall,
            "timestamp": datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
            "checks": checks,
        },
        status_code=200 if all_healthy else 503,
    )


@app.get("/")
async def root():
    return {"message": "Geoglyph Scout API is running", "status": "ok", "version": "1.0.0"}


app.include_router(router)
app.include_router(router, prefix="/api")

# Container startup: uvicorn fastapi_app:app --host 0.0.0.0 --port 8080
