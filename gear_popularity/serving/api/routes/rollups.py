"""
Rollup Endpoints

Run history for operators, plus a manual trigger for backfills.
"""

from datetime import date, datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
import structlog

from gear_popularity.aggregation.rollup import PopularityRollup
from gear_popularity.serving.api.dependencies import get_rollup

router = APIRouter()
logger = structlog.get_logger(__name__)


class RollupRunResponse(BaseModel):
    """One rollup history row"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    as_of_date: date
    corrected_date: Optional[date]
    daily_rows: int
    corrected_rows: int
    windows_rows: int
    lifetime_rows: int
    anomalies: int
    failures: int
    duration_ms: int
    success: bool
    error: Optional[str]
    created_at: Optional[datetime]


class RollupSummary(BaseModel):
    """Outcome of a triggered rollup"""
    base_date: date
    as_of_date: date
    corrected_date: Optional[date]
    daily_rows: int
    corrected_rows: int
    windows_rows: int
    lifetime_rows: int
    anomalies: int
    failures: int
    duration_ms: int
    success: bool
    error: Optional[str]


@router.get("/runs", response_model=List[RollupRunResponse])
async def list_rollup_runs(
    limit: int = Query(20, ge=1, le=200),
    rollup: PopularityRollup = Depends(get_rollup),
) -> List[RollupRunResponse]:
    """Most recent rollup runs first."""
    runs = await rollup.recent_runs(limit)
    return [RollupRunResponse.model_validate(run) for run in runs]


@router.post("/run", response_model=RollupSummary)
async def trigger_rollup(
    base_date: Optional[date] = None,
    rollup: PopularityRollup = Depends(get_rollup),
) -> RollupSummary:
    """
    Run the daily rollup for ``base_date`` (default today), aggregating the day before.
    """
    logger.info("Manual rollup requested", base_date=str(base_date))
    try:
        result = await rollup.run(base_date)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Rollup failed: {e}")

    return RollupSummary(**result.summary())
