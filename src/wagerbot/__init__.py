"""wagerbot - event-driven session engine for chat-channel wagers."""

__version__ = "0.1.0"
