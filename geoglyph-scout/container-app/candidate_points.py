"""
Candidate Points Module
Loads the candidate site table (one row per point with bioclimatic and soil
covariates) that the map UI plots as markers.
"""

import logging
import os
from typing import Any, Dict, List, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class CandidatePoint(BaseModel):
    """A site of interest with its environmental covariates."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False, extra="ignore")

    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    temp_seasonality: float
    temp_annual_range: float
    precip_driest_quarter: float
    max_temp_warmest_month: float
    annual_precipitation: float
    precip_coldest_quarter: float
    isothermality: float
    elevation: float
    sand_frac_pct: float = Field(..., ge=0, le=100)
    gravel_frac_pct: float = Field(..., ge=0, le=100)


CANDIDATE_COLUMNS: Tuple[str, ...] = tuple(CandidatePoint.model_fields)


def parse_candidate_rows(rows: List[Dict[str, Any]]) -> Tuple[List[CandidatePoint], int]:
    """Validate rows into CandidatePoints; returns (points, number of rows skipped)."""
    points: List[CandidatePoint] = []
    skipped = 0
    for index, row in enumerate(rows):
        try:
            points.append(CandidatePoint.model_validate(row))
        except ValidationError as e:
            skipped += 1
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            logger.warning(f"[WARN] Skipping candidate row {index + 2}: invalid {', '.join(fields) or 'row'}")
    return points, skipped


def load_candidate_points(csv_path: str) -> List[CandidatePoint]:
    """Read a header-labelled CSV of candidate points.

    Malformed rows (missing values, non-numeric cells, out-of-range
    coordinates, wrong field count) are skipped, never fatal.
    """
    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Candidate table not found: {csv_path}")

    frame = pd.read_csv(csv_path, skipinitialspace=True, on_bad_lines="skip")
    frame.columns = [str(c).strip() for c in frame.columns]

    missing = [c for c in CANDIDATE_COLUMNS if c not in frame.columns]
    if missing:
        logger.warning(f"[WARN] Candidate table {csv_path} is missing columns: {missing}")

    # NaN cells stay NaN and are rejected by allow_inf_nan=False
    rows = frame.to_dict(orient="records")
    points, skipped = parse_candidate_rows(rows)
    logger.info(f"[OK] Loaded {len(points)} candidate points from {csv_path} ({skipped} skipped)")
    return points
