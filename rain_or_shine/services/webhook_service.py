"""
Strava webhook event handling.

Strava redelivers any event that is not answered with a 200 within a few
seconds, so every outcome here ends in an acknowledgement body and failures
only show up in logs and metrics.

A create event often arrives before the activity is readable through the API,
so a 404 from the processor is retried a bounded number of times inside the
request's time budget.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..repositories import UserRepository
from ..schemas import StravaWebhookEvent
from .activity_processor import ActivityProcessor, ProcessingResult
from .metrics_service import MetricsService

logger = logging.getLogger(__name__)

MAX_PROCESSING_SECONDS = 8.0
MAX_RETRY_ATTEMPTS = 3
RETRY_DELAYS_SECONDS = (1.5, 3.0)


class WebhookService:
    def __init__(
        self,
        users: UserRepository,
        processor: ActivityProcessor,
        metrics: Optional[MetricsService] = None,
        max_processing_seconds: float = MAX_PROCESSING_SECONDS,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        retry_delays: Sequence[float] = RETRY_DELAYS_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.users = users
        self.processor = processor
        self.metrics = metrics
        self.max_processing_seconds = max_processing_seconds
        self.max_attempts = max_attempts
        self.retry_delays = list(retry_delays) or [0.0]
        self._clock = clock
        self._sleep = sleep

    def now(self) -> float:
        return self._clock()

    async def handle_event(self, event: StravaWebhookEvent, started_at: Optional[float] = None) -> Dict[str, Any]:
        """
        Route a validated event and return the acknowledgement body.
        started_at is the clock value when the request arrived.
        """
        if started_at is None:
            started_at = self._clock()

        if event.object_type == "athlete" and event.aspect_type == "deauthorize":
            return self.handle_deauthorization(event)

        if event.object_type != "activity" or event.aspect_type != "create":
            logger.debug(f"Ignoring {event.object_type}/{event.aspect_type} event")
            return {"message": "Event acknowledged"}

        activity_id = str(event.object_id)
        user = self.users.find_by_strava_athlete_id(event.owner_id)

        if not user:
            logger.info(f"Activity webhook for unknown athlete {event.owner_id} (activity {activity_id})")
            return {"message": "Event acknowledged"}

        if not user.weather_enabled:
            logger.info(f"Weather updates disabled for user {user.id}, ignoring activity {activity_id}")
            return {"message": "Event acknowledged"}

        logger.info(f"Processing activity {activity_id} for user {user.id} ({user.display_name})")
        return await self.process_with_retry(activity_id, user.id, started_at)

    def handle_deauthorization(self, event: StravaWebhookEvent) -> Dict[str, Any]:
        strava_athlete_id = event.owner_id
        logger.info(f"Processing deauthorization for Strava athlete {strava_athlete_id}")

        try:
            user = self.users.find_by_strava_athlete_id(strava_athlete_id)
            if not user:
                logger.info(f"Deauthorization for unknown Strava athlete {strava_athlete_id}")
                return {"message": "Deauthorization acknowledged"}

            self.users.delete_by_strava_athlete_id(strava_athlete_id)
            logger.info(f"Deleted user {user.id} ({user.display_name}) after Strava deauthorization")
            return {"message": "Deauthorization processed", "userId": str(user.id)}
        except Exception as e:
            # Strava must still get its 200, otherwise it keeps redelivering
            logger.warning(f"Error during deauthorization of Strava athlete {strava_athlete_id}: {e}")
            return {"message": "Deauthorization acknowledged"}

    async def process_with_retry(self, activity_id: str, user_id: int, started_at: float) -> Dict[str, Any]:
        attempts = 0
        result: Optional[ProcessingResult] = None
        errors: List[Dict[str, Any]] = []

        while attempts < self.max_attempts and self._clock() - started_at < self.max_processing_seconds:
            if attempts > 0:
                delay = self.retry_delays[min(attempts - 1, len(self.retry_delays) - 1)]
                # The next attempt must start inside the budget
                if self._clock() - started_at + delay >= self.max_processing_seconds:
                    logger.info(f"No time left to retry activity {activity_id} after {attempts} attempts")
                    break
                logger.info(f"Retrying activity {activity_id} (attempt {attempts + 1}) in {delay}s")
                await self._sleep(delay)

            try:
                result = await self.processor.process_activity(activity_id, user_id, attempts)
            except Exception as e:
                logger.error(f"Activity {activity_id} processing attempt {attempts + 1} raised: {e}", exc_info=True)
                errors.append({"attempt": attempts + 1, "error": str(e)})
                attempts += 1
                break

            if result.success or result.skipped:
                break

            if result.retryable:
                errors.append({"attempt": attempts + 1, "error": result.error or "Not found"})
                attempts += 1
                continue

            # Only NOT_YET_AVAILABLE is retried
            break

        processing_ms = int((self._clock() - started_at) * 1000)
        success = bool(result and result.success)
        skipped = bool(result and result.skipped)

        summary = (
            f"activity={activity_id} user={user_id} attempts={attempts} "
            f"time={processing_ms}ms"
        )
        if success and not skipped:
            logger.info(f"Activity processed successfully: {summary}")
        elif skipped:
            logger.info(f"Activity processing skipped ({result.reason}): {summary}")
        else:
            final_error = (result.error if result else None) or (errors[-1]["error"] if errors else "Unknown error")
            logger.warning(f"Activity processing failed: {summary} error={final_error} history={errors}")

        if self.metrics:
            self.metrics.record_webhook_processing(activity_id, processing_ms, success, attempts)

        return {
            "message": "Webhook processed",
            "activityId": activity_id,
            "attempts": attempts,
            "processingTimeMs": processing_ms,
            "success": success,
            "skipped": skipped,
        }
