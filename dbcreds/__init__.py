"""Dynamic database credential plugin runtime."""

from dbcreds.__version__ import __version__

__all__ = ["__version__"]
