"""MySQL relay that provisions the requested database on first contact."""

__version__ = "0.1.0"
