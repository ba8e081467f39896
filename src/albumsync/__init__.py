"""
albumsync: mirrors a remote shared photo album into a local content-addressed
store and presents it as a stable, paginated, windowed sequence.
"""

__version__ = "1.0.0"
