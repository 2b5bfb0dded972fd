"""DNS upstream clients, routing and reply helpers for a forwarding resolver."""

__version__ = "0.1.0"