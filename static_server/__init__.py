"""Static file server with path containment and conditional caching."""

__version__ = "1.0.0"
