"""Adventure library endpoints (read-only)."""

from fastapi import APIRouter, HTTPException

from branchwork import library

router = APIRouter()


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/adventures")
async def list_adventures():
    """List available adventure documents (user + presets)."""
    return library.list_adventures()


@router.get("/adventures/{slug}")
async def get_adventure(slug: str):
    """Get the raw document for one adventure."""
    adventure = library.get_adventure(slug)
    if adventure is None:
        raise HTTPException(404, "Adventure not found")
    return adventure
