"""In-process registry of running playthroughs, keyed by session id.

Each session owns one StoryEngine. Sessions live only as long as the process.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from branchwork.config import Settings, build_validator
from branchwork.engine import StoryEngine

logger = logging.getLogger(__name__)

_sessions: dict[str, "Session"] = {}
_settings = Settings()


class SessionNotFound(KeyError):
    """Raised when a session id is not in the registry."""


@dataclass
class Session:
    id: str
    slug: str
    engine: StoryEngine
    created_at: float = field(default_factory=time.time)


def configure(settings: Settings) -> None:
    """Set the settings used to build engines for new sessions."""
    global _settings
    _settings = settings


def new_engine() -> StoryEngine:
    return StoryEngine(
        validator=build_validator(_settings),
        max_cache_size=_settings.cache_size,
        history_limit=_settings.history_limit,
    )


async def create_session(slug: str, document: dict[str, Any]) -> Session:
    """Load a document into a fresh engine and register it.

    Raises AdventureLoadError (or ValidationServiceError) without registering
    anything when the document can't be loaded.
    """
    engine = new_engine()
    await engine.load_adventure(document)
    session = Session(id=uuid.uuid4().hex, slug=slug, engine=engine)
    _sessions[session.id] = session
    logger.info("Session %s started on %s", session.id, slug)
    return session


def get_session(session_id: str) -> Session:
    try:
        return _sessions[session_id]
    except KeyError:
        raise SessionNotFound(session_id) from None


def delete_session(session_id: str) -> None:
    if _sessions.pop(session_id, None) is None:
        raise SessionNotFound(session_id)
    logger.info("Session %s ended", session_id)


def list_sessions() -> list[Session]:
    return list(_sessions.values())


def clear_sessions() -> None:
    _sessions.clear()
