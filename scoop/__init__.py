"""St. Cloud Scoop content and event curation engine."""

__version__ = "1.0.0"
