"""
FastAPI observation endpoints.

Endpoints:
    POST /api/v1/observations            — Record observations (duplicates ignored)
    GET  /api/v1/observations/sequence   — Observation window around a coordinate
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from hazardwatch.container import ServiceContainer, get_container
from hazardwatch.core.errors import ValidationError
from hazardwatch.ml.models import Observation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/observations", tags=["observations"])


class IngestRequest(BaseModel):
    observations: List[Dict[str, Any]] = Field(..., min_length=1, max_length=1000)


@router.post("")
async def ingest_observations(
    req: IngestRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Record raw observations from an upstream feed.

    Each record needs latitude/longitude; timestamp defaults to now.
    A record already stored at the same point and time is skipped.
    """
    parsed: List[Observation] = []
    for index, record in enumerate(req.observations):
        try:
            parsed.append(Observation.from_raw(record))
        except ValueError as e:
            raise ValidationError(str(e), field=f"observations[{index}]") from e

    stored = 0
    for observation in parsed:
        if await container.observation_store.append_observation(observation):
            stored += 1

    logger.info("Ingested %d/%d observations", stored, len(parsed))
    return {"received": len(parsed), "stored": stored, "duplicates": len(parsed) - stored}


@router.get("/sequence")
async def get_sequence(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    lookback_hours: float = Query(24, gt=0, le=24 * 14),
    container: ServiceContainer = Depends(get_container),
):
    sequence = await container.builder.build(latitude, longitude, lookback_hours)
    return {
        "latitude": latitude,
        "longitude": longitude,
        "data_points": len(sequence),
        "is_fallback": sequence.is_fallback,
        "observations": [o.to_dict() for o in sequence],
    }
