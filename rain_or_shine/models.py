from sqlalchemy import Column, Integer, String, Text, Float, ForeignKey, DateTime, Boolean, TypeDecorator
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from cryptography.fernet import Fernet, InvalidToken
from .database import Base
from .config import settings

# Initialize Fernet with a key derived from SECRET_KEY
# Note: Fernet keys must be 32 url-safe base64-encoded bytes.
import base64
import hashlib
key = base64.urlsafe_b64encode(hashlib.sha256(settings.SECRET_KEY.encode()).digest())
fernet = Fernet(key)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class EncryptedString(TypeDecorator):
    """Stored as encrypted text, decrypted on load."""
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return fernet.encrypt(value.encode()).decode()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return fernet.decrypt(value.encode()).decode()
        except InvalidToken:
            # Fallback for old plaintext tokens
            return value

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    strava_athlete_id = Column(Integer, unique=True, index=True, nullable=False)
    access_token = Column(EncryptedString, nullable=False)
    refresh_token = Column(EncryptedString, nullable=False)
    expires_at = Column(Integer, nullable=False)   # Unix timestamp
    weather_enabled = Column(Boolean, nullable=False, default=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    preferences = relationship(
        "UserPreference",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def token_expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, timezone.utc)

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

class UserPreference(Base):
    __tablename__ = "user_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    temperature_unit = Column(String, nullable=False, default="fahrenheit")  # fahrenheit | celsius
    weather_format = Column(String, nullable=False, default="detailed")  # detailed | simple
    include_uv_index = Column(Boolean, nullable=False, default=False)
    include_visibility = Column(Boolean, nullable=False, default=False)
    custom_format = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="preferences")

class Metric(Base):
    __tablename__ = "metrics"

    id = Column(Integer, primary_key=True, index=True)
    metric_type = Column(String, nullable=False, index=True)  # webhook_processing | api_call | token_refresh
    metric_name = Column(String, nullable=False)
    value = Column(Float, nullable=False)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
