"""
Configuration access for the catalog engine.

This package is responsible for:
* Determining the data directory (via env var + sensible default).
* Loading and persisting the engine configuration.
* Resolving the cache directory and the installation prefix.
"""
