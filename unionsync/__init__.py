"""Union Sync: card catalog synchronization for the Union Arena TCG API."""

__version__ = "0.1.0"
