"""Version information for the installed package, falling back to pyproject.toml"""
from importlib import metadata
from pathlib import Path
import tomllib

_version_cache: str | None = None


def _read_pyproject() -> str:
    pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        with open(pyproject_path, "rb") as f:
            return tomllib.load(f).get("project", {}).get("version", "unknown")
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return "unknown"


def get_version() -> str:
    """Return the package version. Cached after first lookup."""
    global _version_cache
    if _version_cache is None:
        try:
            _version_cache = metadata.version("pomotrack")
        except metadata.PackageNotFoundError:
            _version_cache = _read_pyproject()
    return _version_cache
