"""
Centralized filesystem paths for runtime data.

The JSON repository lives in the data directory unless
PROGRESS_TREE_REPOSITORY_FILE points somewhere else.
"""
import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent

REPOSITORY_FILENAME = "progress_bars.json"


def _env_path(name: str):
    raw = os.getenv(name, "").strip()
    return Path(raw).expanduser() if raw else None


def get_data_dir() -> Path:
    """
    Return runtime data directory.

    Priority:
    1. PROGRESS_TREE_DATA_DIR env var
    2. <project_root>/data
    """
    return _env_path("PROGRESS_TREE_DATA_DIR") or PROJECT_ROOT / "data"


def get_repository_path() -> Path:
    """
    Return the progress repository file.

    Priority:
    1. PROGRESS_TREE_REPOSITORY_FILE env var
    2. <data dir>/progress_bars.json
    """
    return _env_path("PROGRESS_TREE_REPOSITORY_FILE") or get_data_dir() / REPOSITORY_FILENAME


DATA_DIR = get_data_dir()
REPOSITORY_PATH = get_repository_path()
