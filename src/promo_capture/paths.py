import os

from .logging import get_logger

log = get_logger("paths")

PROJECT_MARKERS = ("platform_catalog.json", "pyproject.toml", "README.md")


def expand_abs(path: str) -> str:
    """Expand env vars and ~ then return absolute path."""
    return os.path.abspath(os.path.expanduser(os.path.expandvars(path or "")))


def find_project_root(start_dir: str | None = None) -> str:
    """Find the repository root by walking upward from start_dir.

    A directory holding .git/ or one of PROJECT_MARKERS counts as the root.
    Falls back to absolute(start_dir) if nothing found.
    """
    d = os.path.abspath(start_dir or os.getcwd() or ".")
    start = d
    while True:
        if os.path.isdir(os.path.join(d, ".git")):
            return d
        for marker in PROJECT_MARKERS:
            if os.path.isfile(os.path.join(d, marker)):
                return d
        parent = os.path.dirname(d)
        if parent == d:
            log.debug(f"No project marker found above {start}; using it as root")
            return start
        d = parent


def var_dir(root_dir: str) -> str:
    """Return the absolute var directory under the project root."""
    return os.path.join(os.path.abspath(root_dir), "var")


def vectors_dir(root_dir: str) -> str:
    """Default location of the append-only vector store."""
    return os.path.join(var_dir(root_dir), "vectors")
