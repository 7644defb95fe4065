"""FastAPI API endpoints under /api.

    POST /api/story    play one turn (start, choice, dice_result, continue)
    GET  /api/health   credential availability probe

The game state lives with the client and travels with every turn request;
the server keeps nothing between requests.
"""

from fastapi import APIRouter

from .health import router as health_router
from .story import router as story_router

router = APIRouter()
router.include_router(health_router)
router.include_router(story_router)
