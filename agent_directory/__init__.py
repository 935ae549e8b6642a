"""Cache-first client for the agent directory API."""

__version__ = "0.1.0"
