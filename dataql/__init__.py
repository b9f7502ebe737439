"""DataQL source resolution and caching pipeline."""

__version__ = "0.4.0"
