"""
Health check endpoint (public, bypasses access control).
"""

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    engine = getattr(request.app.state, "access_engine", None)
    return {
        "status": "ok",
        "access_engine": "ready" if engine is not None else "unconfigured",
    }
