from fastapi import APIRouter
from datetime import datetime, timezone

from hospitaldesk.config import settings
from hospitaldesk.services.dashboard import sessions

router = APIRouter(prefix="/health", tags=["health"])

@router.get("")
def health_root():
    return {
        "status": "ok",
        "ts": datetime.now(timezone.utc).isoformat(),
        "store_configured": bool(settings.DATABASE_URL),
        "realtime_configured": bool(settings.REDIS_URL),
        "open_sessions": len(sessions),
    }
