from __future__ import annotations

import tomllib
from importlib import metadata
from pathlib import Path


_DIST_NAME = "wattch-sync"


def get_version() -> str:
    """Return the installed version, or the pyproject.toml version for source checkouts."""

    try:
        return metadata.version(_DIST_NAME)
    except metadata.PackageNotFoundError:
        pass

    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    if not pyproject.exists():
        return "0.0.0"

    try:
        data = tomllib.loads(pyproject.read_text("utf-8"))
        project = data.get("project") or {}
        v = project.get("version")
        return str(v) if v else "0.0.0"
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"


__version__ = get_version()
