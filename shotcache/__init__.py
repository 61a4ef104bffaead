"""Screenshot-as-a-service with a daily on-disk cache and a shared Chromium."""

__version__ = "1.0.0"
