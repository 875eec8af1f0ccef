"""
FastAPI pattern-analysis endpoints.

Endpoints:
    POST /api/v1/patterns/analyze      — Early-warning analysis for a coordinate
    POST /api/v1/patterns/detect       — Run detectors over a supplied sequence
    GET  /api/v1/patterns/detectors    — Registered detectors and data needs
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from hazardwatch.container import ServiceContainer, get_container
from hazardwatch.core.errors import InsufficientDataError, ValidationError
from hazardwatch.ml.early_warning import EarlyWarningArbiter
from hazardwatch.ml.models import Observation, ObservationSequence
from hazardwatch.ml.pattern_detectors import DEFAULT_DETECTORS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/patterns", tags=["pattern-analysis"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class AnalyzeRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    lookback_hours: float = Field(24, gt=0, le=24 * 14, description="History window")


class DetectRequest(BaseModel):
    observations: List[Dict[str, Any]] = Field(
        ..., description="Raw observation records (snake_case, camelCase or short codes)",
    )
    detectors: Optional[List[str]] = Field(
        None, description="Subset of detector names; all when omitted",
    )


def _parse_observations(raw: List[Dict[str, Any]]) -> ObservationSequence:
    parsed = []
    for index, record in enumerate(raw):
        try:
            parsed.append(Observation.from_raw(record))
        except ValueError as e:
            raise ValidationError(str(e), field=f"observations[{index}]") from e
    parsed.sort(key=lambda o: o.timestamp)
    return ObservationSequence(observations=tuple(parsed))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/analyze")
async def analyze_location(
    req: AnalyzeRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Build the stored observation window around a coordinate and pick the
    dominant precursor pattern with its time-to-hazard estimate.
    """
    warning = await container.arbiter.analyze(req.latitude, req.longitude, req.lookback_hours)
    return warning.to_dict()


@router.post("/detect")
async def detect_patterns(req: DetectRequest):
    """Arbitrate over a caller-supplied sequence; nothing is stored."""
    detectors = DEFAULT_DETECTORS
    if req.detectors:
        known = {d.name: d for d in DEFAULT_DETECTORS}
        unknown = sorted(set(req.detectors) - set(known))
        if unknown:
            raise ValidationError(
                f"Unknown detectors: {', '.join(unknown)}",
                field="detectors", available=sorted(known),
            )
        detectors = tuple(d for d in DEFAULT_DETECTORS if d.name in req.detectors)

    sequence = _parse_observations(req.observations)
    required = min(d.min_points for d in detectors)
    if len(sequence) < required:
        raise InsufficientDataError(required, len(sequence))

    warning = EarlyWarningArbiter(detectors=detectors).evaluate(sequence)
    return warning.to_dict()


@router.get("/detectors")
async def list_detectors():
    return {
        "detectors": [
            {"name": d.name, "hazard_type": d.hazard_type.value, "min_points": d.min_points}
            for d in DEFAULT_DETECTORS
        ],
    }
