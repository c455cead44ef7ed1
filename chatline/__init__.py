"""chatline: a terminal chat client that keeps every conversation."""

__version__ = "0.3.0"
