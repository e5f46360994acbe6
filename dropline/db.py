# dropline/db.py
from functools import lru_cache

from motor.motor_asyncio import AsyncIOMotorClient

from dropline.core.config import settings

# --------------------------------------------------
# MongoDB connection (no work at import time)
# --------------------------------------------------
@lru_cache(maxsize=1)
def get_client() -> AsyncIOMotorClient:
    # Cached to play nicely with uvicorn --reload; tz_aware keeps timestamps UTC-aware
    return AsyncIOMotorClient(settings.mongo_uri, tz_aware=True)

def get_db():
    return get_client()[settings.mongo_db]

