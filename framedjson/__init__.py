"""Asyncio TCP server exchanging length-prefixed JSON messages."""

__version__ = "1.0.0"
__all__ = ["protocol", "pool", "logic", "session", "server"]