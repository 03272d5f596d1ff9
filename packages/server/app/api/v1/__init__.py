"""
API v1 Router

Sharing, access lookup, department membership and task subscription endpoints.
"""

from fastapi import APIRouter
from . import access, areas, shares, tasks

router = APIRouter()

router.include_router(shares.router, prefix="/shares", tags=["Sharing"])
router.include_router(access.router, tags=["Access"])
router.include_router(areas.router, prefix="/areas", tags=["Areas"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/shares",
            "/access/{resource_type}/{uid}",
            "/visible/{resource_type}",
            "/areas/{area_uid}/members",
            "/areas/{area_uid}/subscribers",
            "/tasks/{task_uid}/subscribers",
            "/tasks/{task_uid}/assignee",
        ],
    }
