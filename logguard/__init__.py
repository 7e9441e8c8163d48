"""logguard: structured logging with sanitization and compliance controls."""

__version__ = "0.1.0"
