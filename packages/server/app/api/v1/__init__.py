"""
API v1 Router

Session-authenticated evidence and edit-request endpoints. The magic-link
endpoints live at the application root (see magic_links.py).
"""

from fastapi import APIRouter
from . import edit_requests, evidence

router = APIRouter()

router.include_router(evidence.router, prefix="/evidence", tags=["Evidence"])
router.include_router(edit_requests.router, prefix="/edit-requests", tags=["Edit Requests"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/evidence",
            "/evidence/{evidenceId}/events",
            "/evidence/{evidenceId}/edit-requests",
            "/edit-requests/{requestId}/approve",
            "/edit-requests/{requestId}/deny",
        ],
    }
