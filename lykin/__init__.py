"""lykin: a personal feed reader for Secure Scuttlebutt."""

__version__ = "0.1.0"
