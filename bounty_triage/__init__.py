"""
Bounty Triage - mirrors GitHub issues for review and scores their reporters.
"""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("bounty-triage")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__"]
