import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import JSONResponse

from .deps import get_activity_processor, get_current_user
from .errors import ErrorKind
from .limiter import limiter
from .models import User
from .services.activity_processor import (
    SKIP_ALREADY_PROCESSED,
    SKIP_NO_GPS,
    SKIP_WEATHER_DISABLED,
    ActivityProcessor,
    ProcessingResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    ErrorKind.NOT_YET_AVAILABLE: (404, "ACTIVITY_NOT_FOUND"),
    ErrorKind.AUTH_EXPIRED: (401, "UNAUTHORIZED"),
    ErrorKind.FORBIDDEN: (403, "FORBIDDEN"),
    ErrorKind.RATE_LIMITED: (429, "RATE_LIMITED"),
    ErrorKind.WEATHER_UNAVAILABLE: (503, "WEATHER_SERVICE_UNAVAILABLE"),
}

def success_message(result: ProcessingResult) -> str:
    if result.skipped:
        if result.reason == SKIP_ALREADY_PROCESSED:
            return "Activity already contains weather data"
        if result.reason == SKIP_WEATHER_DISABLED:
            return "Weather updates are currently disabled for your account"
        if result.reason == SKIP_NO_GPS:
            return "Activity processed but no weather added (missing GPS data)"
        return f"Activity was skipped: {result.reason}"
    return "Activity processed successfully with weather data"

def error_response(kind: Optional[ErrorKind]):
    return ERROR_RESPONSES.get(kind, (400, "PROCESSING_ERROR"))

@router.post("/activities/process/{activity_id}")
@limiter.limit("10/minute")
async def process_activity(
    request: Request,
    activity_id: str = Path(...),
    user: User = Depends(get_current_user),
    processor: ActivityProcessor = Depends(get_activity_processor),
):
    """
    Manually add weather to one of the current user's activities.
    Useful for activities that were missed or failed during webhook delivery.
    """
    if not activity_id.isdigit():
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Activity ID must be numeric"},
        )

    logger.info(f"Manual processing requested for activity {activity_id} by user {user.id}")

    start = time.monotonic()
    result = await processor.process_activity(activity_id, user.id)
    processing_ms = int((time.monotonic() - start) * 1000)

    if result.success:
        logger.info(f"Manual processing of activity {activity_id} done in {processing_ms}ms (skipped={result.skipped})")
        return {
            "success": True,
            "message": success_message(result),
            "data": {
                "activityId": result.activity_id,
                "weatherData": result.weather_data.model_dump(mode="json") if result.weather_data else None,
                "skipped": result.skipped,
                "reason": result.reason,
                "processingTime": processing_ms,
            },
        }

    logger.warning(f"Manual processing of activity {activity_id} failed: {result.error}")
    status_code, code = error_response(result.error_kind)
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": "Failed to process activity",
            "error": {
                "message": result.error or "Unknown error occurred",
                "code": code,
            },
            "data": {
                "activityId": result.activity_id,
                "skipped": result.skipped,
                "reason": result.reason,
            },
        },
    )
