"""Backend-for-frontend for the academy platform."""

__version__ = "1.0.0"
