"""
Command line interface for dataroll.
"""

from .main import app

__all__ = ["app"]
