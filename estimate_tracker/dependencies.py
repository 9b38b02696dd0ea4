"""
Shared service providers, exposed as FastAPI dependencies so tests can
override them.
"""
from functools import lru_cache

import httpx

from .config import settings
from .core.feed import ChangeFeed
from .core.middleware import SlidingWindowRateLimiter
from .core.records import SqlRecordStore
from .core.storage import CloudinaryObjectStore
from .database import SessionLocal
from .patients.models import PatientRecord
from .patients.state import PatientState, SessionRegistry

change_feed = ChangeFeed()

intake_rate_limiter = SlidingWindowRateLimiter(
    limit=settings.intake_rate_limit,
    window_seconds=settings.intake_rate_window_seconds
)


def get_feed() -> ChangeFeed:
    return change_feed


@lru_cache
def get_patient_store() -> SqlRecordStore:
    return SqlRecordStore(PatientRecord, SessionLocal, change_feed)


@lru_cache
def get_object_store() -> CloudinaryObjectStore:
    return CloudinaryObjectStore(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        public_buckets=[settings.practice_assets_bucket]
    )


def get_rate_limiter() -> SlidingWindowRateLimiter:
    return intake_rate_limiter


@lru_cache
def get_session_registry() -> SessionRegistry:
    def build_state(owner_id: str) -> PatientState:
        return PatientState(
            owner_id,
            records=get_patient_store(),
            objects=get_object_store(),
            feed=change_feed,
            bucket=settings.cost_estimates_bucket,
            signed_url_ttl=settings.signed_url_ttl_seconds
        )
    return SessionRegistry(build_state)


async def get_http_client():
    """HTTP client for outgoing webhook calls."""
    async with httpx.AsyncClient(timeout=settings.email_webhook_timeout) as client:
        yield client
