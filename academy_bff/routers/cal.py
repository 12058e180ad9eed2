"""
Cal.com proxy routes used by the frontend.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from ..schemas.response import ResponseAPI
from ..services.cal_client import CalClient
from ..utils.rate_limiter import limiter, RATE_LIMITS
from .dependencies import get_cal_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cal", tags=["Cal.com"])


@router.get("/bookings/{uid}")
@limiter.limit(RATE_LIMITS["cal_proxy"])
async def get_booking(request: Request, uid: str, client: CalClient = Depends(get_cal_client)):
    result = await client.get_booking(uid)
    if not result.success:
        status_code = 404 if result.status_code == 404 else 502
        return JSONResponse(
            status_code=status_code,
            content=ResponseAPI.error(result.error or "Error fetching booking").model_dump()
        )
    return ResponseAPI.ok("Booking fetched successfully", result.data.model_dump(mode="json"))


@router.post("/bookings/{uid}/confirm")
@limiter.limit(RATE_LIMITS["cal_proxy"])
async def confirm_booking(request: Request, uid: str, client: CalClient = Depends(get_cal_client)):
    result = await client.confirm_booking(uid)
    if not result.success:
        status_code = result.status_code if result.status_code >= 400 else 502
        return JSONResponse(
            status_code=status_code,
            content=ResponseAPI.error(result.error or "Error confirming booking").model_dump()
        )
    return Response(status_code=204)
