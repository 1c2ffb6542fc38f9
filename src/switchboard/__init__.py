"""Switchboard - normalized JSON-lines bridge to messaging-service client libraries."""

__version__ = "0.3.0"
