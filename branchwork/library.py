"""Read-only library of adventure documents.

Layout:
  <adventures_dir>/          User adventures, one <slug>.json per document
  presets/adventures/        Built-in adventures shipped with the package

list_adventures() and get_adventure() merge both; a user document wins on
slug collision. Nothing here writes.

Slug rules: title → Unicode normalize → strip non-ASCII → lowercase →
replace non-alnum runs with hyphen → strip leading/trailing hyphens.
"""

import json
import logging
import re
import unicodedata
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_adventures_dir: Path | None = None
_presets_dir: Path | None = None


def slugify(title: str) -> str:
    """Convert a title to a filesystem-safe slug.

    "The Sunken Vault" → "the-sunken-vault"
    """
    text = unicodedata.normalize("NFKD", title)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"['\"]", "", text)
    text = re.sub(r"[^a-z0-9]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


def init_library(adventures_dir: Path, presets_dir: Path | None = None) -> None:
    global _adventures_dir, _presets_dir
    _adventures_dir = Path(adventures_dir)
    if presets_dir is None:
        # Default: repo_root/presets
        presets_dir = Path(__file__).parent.parent / "presets"
    _presets_dir = Path(presets_dir)


def adventures_dir() -> Path:
    assert _adventures_dir is not None, "Call init_library() before using the library"
    return _adventures_dir


def preset_adventures_dir() -> Path:
    assert _presets_dir is not None, "Call init_library() before using the library"
    return _presets_dir / "adventures"


def _read(path: Path) -> dict[str, Any] | None:
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as e:
        logger.warning("Skipping unreadable adventure %s: %s", path, e)
        return None


def _summary(slug: str, data: dict[str, Any], source: str) -> dict[str, Any]:
    return {
        "slug": slug,
        "id": data.get("id", slug),
        "title": data.get("title", slug),
        "description": data.get("description", ""),
        "author": data.get("author", ""),
        "version": data.get("version", ""),
        "scene_count": len(data.get("scenes", [])),
        "source": source,
    }


def list_adventures() -> list[dict[str, Any]]:
    by_slug: dict[str, dict[str, Any]] = {}
    # Presets first (lower priority)
    sources = (("preset", preset_adventures_dir()), ("user", adventures_dir()))
    for source, directory in sources:
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.json")):
            data = _read(path)
            if data is not None:
                by_slug[path.stem] = _summary(path.stem, data, source)
    return sorted(by_slug.values(), key=lambda s: s["title"].lower())


def get_adventure(slug: str) -> dict[str, Any] | None:
    """The raw document for a slug, or None."""
    for directory in (adventures_dir(), preset_adventures_dir()):
        path = directory / f"{slug}.json"
        if path.is_file():
            return _read(path)
    return None
