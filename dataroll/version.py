"""
Version management for dataroll.

This module holds the package version and a small helper used by the CLI
to print version information.
"""

import sys
from typing import Dict, Any

# Current package version
__version__ = "0.1.0"

VERSION_MAJOR = 0
VERSION_MINOR = 1
VERSION_PATCH = 0

PYTHON_MIN_VERSION = (3, 9)


def get_version() -> str:
    """Get the version string in semver format."""
    return f"{VERSION_MAJOR}.{VERSION_MINOR}.{VERSION_PATCH}"


def get_version_dict() -> Dict[str, Any]:
    """
    Get version information as a dictionary.

    Returns:
        Dictionary with the package version and interpreter details
    """
    return {
        "version": get_version(),
        "major": VERSION_MAJOR,
        "minor": VERSION_MINOR,
        "patch": VERSION_PATCH,
        "python_version": ".".join(str(part) for part in sys.version_info[:3]),
        "python_min_version": ".".join(str(part) for part in PYTHON_MIN_VERSION),
    }


def is_python_compatible() -> bool:
    """Check whether the running interpreter is supported."""
    return sys.version_info[:2] >= PYTHON_MIN_VERSION
