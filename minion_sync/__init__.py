"""One-way task synchronization between task backends."""

__version__ = "0.1.0"
