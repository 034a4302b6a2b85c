"""
API v1 Router
"""

from fastapi import APIRouter

from identity_core.api.v1 import auth

router = APIRouter()

# Include all endpoint routers
router.include_router(auth.router)

__all__ = ["router"]
