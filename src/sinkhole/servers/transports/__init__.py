"""Upstream transports used by the resolver loop."""
