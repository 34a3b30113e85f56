"""Application version lookup."""

from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

DISTRIBUTION_NAME = "consult-notifications"


def get_version() -> str:
    """Prefer the installed distribution version, then a VERSION file at the repo root."""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    # backend/app/core/version.py -> ../../../VERSION
    version_file = Path(__file__).resolve().parents[3] / "VERSION"
    try:
        return version_file.read_text().strip()
    except FileNotFoundError:
        return "0.0.0"


__version__ = get_version()
