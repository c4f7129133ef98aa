"""Natural-language bulk cleanup for Gmail."""

__version__ = "0.1.0"
