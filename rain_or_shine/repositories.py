import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session, joinedload

from .models import User

logger = logging.getLogger(__name__)


class UserRepository:
    """
    Account lookups used by the webhook pipeline.
    Every call runs in its own short-lived session; returned users are
    detached with their preferences already loaded.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def find_by_id(self, user_id: int) -> Optional[User]:
        with self._session_factory() as db:
            return (
                db.query(User)
                .options(joinedload(User.preferences))
                .filter(User.id == user_id)
                .first()
            )

    def find_by_strava_athlete_id(self, strava_athlete_id: int) -> Optional[User]:
        with self._session_factory() as db:
            return (
                db.query(User)
                .options(joinedload(User.preferences))
                .filter(User.strava_athlete_id == strava_athlete_id)
                .first()
            )

    def update_tokens(self, user_id: int, access_token: str, refresh_token: str, expires_at: datetime) -> None:
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise ValueError(f"User {user_id} not found")
            user.access_token = access_token
            user.refresh_token = refresh_token
            user.expires_at = int(expires_at.timestamp())
            db.add(user)
            db.commit()
        logger.info(f"Stored refreshed Strava tokens for user {user_id}")

    def delete(self, user_id: int) -> bool:
        with self._session_factory() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                return False
            # ORM delete so the preferences cascade runs on every backend
            db.delete(user)
            db.commit()
        logger.info(f"Deleted user {user_id}")
        return True

    def delete_by_strava_athlete_id(self, strava_athlete_id: int) -> bool:
        with self._session_factory() as db:
            user = db.query(User).filter(User.strava_athlete_id == strava_athlete_id).first()
            if not user:
                return False
            db.delete(user)
            db.commit()
        logger.info(f"Deleted user for Strava athlete {strava_athlete_id}")
        return True
