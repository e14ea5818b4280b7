"""Maintenance endpoints."""

from fastapi import APIRouter

from atende.schemas.operator import SweepResponse
from atende.services.debounce_service import get_scheduler

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/triggers/sweep", response_model=SweepResponse)
async def sweep_triggers():
    """Fire every due debounce trigger now."""
    fired = await get_scheduler().sweep()
    return SweepResponse(fired=fired)
