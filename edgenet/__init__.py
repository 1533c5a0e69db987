"""Asyncio networking interfaces, an operating-system socket stack, and an mDNS responder and querier."""

__version__ = "0.1.0"

__all__ = ["buffers", "handlers", "host", "mdns_io", "nal", "stack", "wire"]