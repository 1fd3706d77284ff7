"""
Status and health check endpoints.

WHAT: Health monitoring for the database
WHY: Quick diagnostics for ops and load balancers
HOW: FastAPI endpoint calling the database ping
"""

from fastapi import APIRouter

from ....core.database import ping_database
from ....core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Overall application health check.

    Returns:
        JSON with overall health status
    """
    db_status = ping_database()
    db_available = db_status["available"]

    return {
        "status": "healthy" if db_available else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": {
                "available": db_available,
                "error": db_status["error"],
            }
        }
    }
