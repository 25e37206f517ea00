"""FastAPI API endpoints under /api.

Endpoint groups: health + adventure library, sessions (start, scene, choices,
item use, save/restore, export). A session wraps one StoryEngine; its child
resources are nested under /api/sessions/{session_id}/.
"""

from fastapi import APIRouter

from .adventures import router as adventures_router
from .sessions import router as sessions_router

router = APIRouter()
router.include_router(adventures_router)
router.include_router(sessions_router)
