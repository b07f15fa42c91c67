"""Chapter enhancement pipeline: splitting, per-chunk cache and rotating provider dispatch."""

__version__ = "0.1.0"
