"""
Health check endpoints
"""
import os

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.logging_config import LoggingConfig
from app.models.stone_block import BlockStatus, StoneBlock
from app.services.blob_store import LocalBlobStore, get_blob_store
from app.utils.datetime_utils import utc_now_iso

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
def health_check():
    """
    Basic health check endpoint

    Returns:
        dict: Health status
    """
    return {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "service": get_settings().app_name,
    }


@router.get("/health/detailed")
def detailed_health_check(
    db: Session = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
):
    """
    Detailed health check with component status

    Returns:
        dict: Detailed health status of all components
    """
    settings = get_settings()
    health_status = {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "service": settings.app_name,
        "version": "0.1.0",
        "environment": settings.app_env,
        "components": {}
    }

    overall_healthy = True

    # Check database
    try:
        db.execute(text("SELECT 1"))
        db.commit()
        health_status["components"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful"
        }
    except Exception as e:
        overall_healthy = False
        logger.error("Database health check failed", exc_info=True)
        health_status["components"]["database"] = {
            "status": "unhealthy",
            "message": "Database connection failed",
            "error": type(e).__name__
        }

    # Check blob store is writable
    root = blob_store.root
    if root.is_dir() and os.access(root, os.W_OK):
        health_status["components"]["blob_store"] = {
            "status": "healthy",
            "message": "Blob store is writable",
        }
    else:
        overall_healthy = False
        health_status["components"]["blob_store"] = {
            "status": "unhealthy",
            "message": "Blob store directory is missing or read-only",
        }

    # Inventory summary
    if health_status["components"]["database"]["status"] == "healthy":
        try:
            counts = {
                state.value: db.query(StoneBlock).filter(StoneBlock.status == state.value).count()
                for state in BlockStatus
            }
            health_status["components"]["inventory"] = {
                "status": "healthy",
                "message": f"{sum(counts.values())} blocks tracked",
                "by_status": counts,
            }
        except Exception as e:
            logger.warning("Inventory summary failed", exc_info=True)
            health_status["components"]["inventory"] = {
                "status": "error",
                "message": "Failed to count blocks",
                "error": type(e).__name__
            }

    if not overall_healthy:
        health_status["status"] = "unhealthy"

    return health_status
