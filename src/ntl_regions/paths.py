"""
Canonical path resolution for the ntl_regions project.

Single source of truth for configuration and log locations.
The project root is detected via `.project-root` (primary) and fallback markers.
"""

from pathlib import Path
from typing import Optional

# Markers to detect project root (in priority order)
ROOT_MARKERS = [".project-root", "pyproject.toml", ".git"]


def find_project_root(start_path: Optional[Path] = None) -> Path:
    """
    Find the project root by searching upward for marker files.

    Args:
        start_path: Starting directory for search. Defaults to this file's location.

    Returns:
        Path to project root directory.

    Raises:
        FileNotFoundError: If no root marker is found.
    """
    if start_path is None:
        start_path = Path(__file__).resolve().parent

    current = start_path

    # Search upward until we find a marker or hit filesystem root
    while current != current.parent:
        for marker in ROOT_MARKERS:
            if (current / marker).exists():
                return current
        current = current.parent

    for marker in ROOT_MARKERS:
        if (current / marker).exists():
            return current

    raise FileNotFoundError(
        f"Could not find project root. Searched for markers {ROOT_MARKERS} "
        f"starting from {start_path}"
    )


def _resolve_root() -> Path:
    # Installed (non-editable) copies have no marker above site-packages
    try:
        return find_project_root()
    except FileNotFoundError:
        return Path.cwd().resolve()


# =============================================================================
# Canonical paths (resolved at import time)
# =============================================================================

PROJECT_ROOT = _resolve_root()

CONFIG_DIR = PROJECT_ROOT / "configs"
PARAMS_FILE = CONFIG_DIR / "params.yml"

LOGS_DIR = PROJECT_ROOT / "logs"
