from pathlib import Path

import pytest

from branchwork import library, sessions

TEST_ADVENTURES_DIR = Path("adventures-tests")
PRESETS_DIR = Path(__file__).parent / "presets"


@pytest.fixture(autouse=True)
def clean_library():
    """Point the library at an empty user dir + the shipped presets before every test."""
    TEST_ADVENTURES_DIR.mkdir(exist_ok=True)
    for path in TEST_ADVENTURES_DIR.glob("*.json"):
        path.unlink()
    library.init_library(TEST_ADVENTURES_DIR, presets_dir=PRESETS_DIR)
    sessions.clear_sessions()
    yield
    sessions.clear_sessions()
