"""Trending and recommendation scoring engine for setlist predictions."""

__version__ = "1.0.0"
