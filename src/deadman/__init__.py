"""Dead man's switch monitoring service."""

__version__ = "1.0.0"
