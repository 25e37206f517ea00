from pathlib import Path

from fastapi import FastAPI

from branchwork import library, sessions
from branchwork.config import Settings, load_settings
from branchwork.routes import router


def create_app(adventures_dir: Path | None = None, settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    library.init_library(adventures_dir or settings.adventures_dir)
    sessions.configure(settings)

    app = FastAPI(title="Branchwork")
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses BRANCHWORK_ADVENTURES_DIR or ./adventures)
app = create_app()
