"""chatrelay -- streaming multi-provider chat backend."""

__version__ = "0.1.0"
