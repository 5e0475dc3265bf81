"""ditzzy — command line interface for the Ditzzy API server."""

__version__ = "1.0.0"
