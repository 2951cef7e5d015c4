"""SciBrain API: auth, storage and study-material routes for the notes app."""

from scibrain.__version__ import __version__

__all__ = ["__version__"]
