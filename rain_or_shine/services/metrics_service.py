import json
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..models import Metric

logger = logging.getLogger(__name__)


class MetricsService:
    """
    Best-effort performance metrics.
    Each record is a synchronous commit on the calling thread, so it blocks the
    event loop for one small write. Recording never raises.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, metric_type: str, metric_name: str, value: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        try:
            with self._session_factory() as db:
                db.add(Metric(
                    metric_type=metric_type,
                    metric_name=metric_name,
                    value=value,
                    details=json.dumps(metadata) if metadata else None,
                ))
                db.commit()
        except Exception as e:
            logger.error(f"Failed to record metric {metric_type}/{metric_name}: {e}")

    def record_api_call(self, api_name: str, endpoint: str, duration_ms: float,
                        status_code: Optional[int] = None, error: Optional[str] = None) -> None:
        self.record("api_call", api_name, duration_ms, {
            "endpoint": endpoint,
            "status_code": status_code,
            "success": status_code is not None and status_code < 400,
            "error": error,
        })

    def record_webhook_processing(self, activity_id: str, duration_ms: float, success: bool, retry_count: int = 0) -> None:
        self.record("webhook_processing", "strava_webhook", duration_ms, {
            "activity_id": activity_id,
            "success": success,
            "retry_count": retry_count,
        })

    def record_token_refresh(self, success: bool, duration_ms: float) -> None:
        self.record("token_refresh", "oauth_token", duration_ms, {"success": success})
