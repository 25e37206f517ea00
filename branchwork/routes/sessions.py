"""Playthrough endpoints: start a session, read choices, choose, save/restore."""

from fastapi import APIRouter, HTTPException

from branchwork import library, sessions
from branchwork.engine import AdventureLoadError, StoryEngine
from branchwork.models import SaveSnapshot
from branchwork.validation import ValidationServiceError

from .models import ChoiceBody, CreateSession, UseItemBody

router = APIRouter()


def _engine(session_id: str) -> StoryEngine:
    try:
        return sessions.get_session(session_id).engine
    except sessions.SessionNotFound:
        raise HTTPException(404, "Session not found")


def _scene_payload(session_id: str, engine: StoryEngine) -> dict:
    return {"session_id": session_id, **engine.render_current_scene()}


@router.post("/sessions")
async def create_session(body: CreateSession):
    """Start a playthrough of a library adventure."""
    document = library.get_adventure(body.adventure)
    if document is None:
        raise HTTPException(404, "Adventure not found")
    try:
        session = await sessions.create_session(body.adventure, document)
    except AdventureLoadError as e:
        raise HTTPException(400, str(e))
    except ValidationServiceError as e:
        raise HTTPException(502, str(e))
    return _scene_payload(session.id, session.engine)


@router.get("/sessions/{session_id}")
async def get_scene(session_id: str):
    """Current scene with rendered text and visible choices."""
    return _scene_payload(session_id, _engine(session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    try:
        sessions.delete_session(session_id)
    except sessions.SessionNotFound:
        raise HTTPException(404, "Session not found")
    return {"ok": True}


@router.get("/sessions/{session_id}/choices")
async def get_choices(session_id: str):
    engine = _engine(session_id)
    return [view.model_dump(mode="json") for view in engine.get_current_choices()]


@router.post("/sessions/{session_id}/choices/{choice_id}")
async def make_choice(session_id: str, choice_id: str, body: ChoiceBody | None = None):
    """Take a visible, selectable choice and return the resulting scene."""
    engine = _engine(session_id)
    choice = engine.current_scene.choice(choice_id) if engine.current_scene else None
    if choice is None or not engine.evaluate_choice(choice).is_visible:
        raise HTTPException(404, "Choice not available")
    submission = body.input if body else None
    if engine.make_choice(choice_id, submission) is None:
        raise HTTPException(409, "Choice is locked")
    return _scene_payload(session_id, engine)


@router.post("/sessions/{session_id}/items/{item_id}/use")
async def use_item(session_id: str, item_id: str, body: UseItemBody | None = None):
    engine = _engine(session_id)
    result = engine.use_item(item_id, body.quantity if body else 1)
    if not result.success:
        raise HTTPException(409, result.message)
    return result


@router.get("/sessions/{session_id}/save")
async def get_save(session_id: str):
    return _engine(session_id).snapshot().model_dump(mode="json", by_alias=True)


@router.put("/sessions/{session_id}/save")
async def restore_save(session_id: str, body: SaveSnapshot):
    """Restore a snapshot onto the session's adventure."""
    engine = _engine(session_id)
    if not engine.load_from_save(body):
        raise HTTPException(400, "Save does not match this adventure")
    return _scene_payload(session_id, engine)


@router.get("/sessions/{session_id}/export")
async def export_data(session_id: str):
    return _engine(session_id).generate_exportable_data()
