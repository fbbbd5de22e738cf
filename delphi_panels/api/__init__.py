"""API routes for Delphi Panels."""

from fastapi import APIRouter

from .ai import router as ai_router
from .feedback import router as feedback_router
from .invitations import router as invitations_router
from .notifications import router as notifications_router
from .panels import router as panels_router
from .topics import router as topics_router

# Main API router
api_router = APIRouter()

# Panels and their invitations
api_router.include_router(panels_router)
api_router.include_router(invitations_router)

# Topic lifecycle: topics, rounds, feedback
api_router.include_router(topics_router)
api_router.include_router(feedback_router)

# Supporting services
api_router.include_router(ai_router)
api_router.include_router(notifications_router)

__all__ = ["api_router"]
