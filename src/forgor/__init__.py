"""forgor: natural language to shell commands."""

from forgor.version import __version__

__all__ = ["__version__"]
