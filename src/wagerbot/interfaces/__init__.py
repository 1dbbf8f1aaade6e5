"""Protocol interfaces for wagerbot collaborators."""

from wagerbot.interfaces.activity import ActivityLog
from wagerbot.interfaces.backend import TransferBackend
from wagerbot.interfaces.notifier import Notifier
from wagerbot.interfaces.price import PriceFeed
from wagerbot.interfaces.transport import ChatTransport

__all__ = [
    "ActivityLog",
    "TransferBackend",
    "Notifier",
    "PriceFeed",
    "ChatTransport",
]
