"""Data models for the wagerbot session engine."""

from wagerbot.models.config import (
    BotConfig,
    ChannelConfig,
    DiscordConfig,
    GameConfig,
    OfferConfig,
    PaymentConfig,
    PriceConfig,
    QueueConfig,
    StorageConfig,
    TemplateConfig,
    WalletConfig,
)
from wagerbot.models.events import ChannelInfo, ChatMessage, Identity
from wagerbot.models.records import (
    ActivityRecord,
    CanSendResult,
    ChannelClass,
    ChannelKind,
    GateResult,
    IntentState,
    PaymentIntent,
    PendingOffer,
    TransferResult,
)
from wagerbot.models.session import Round, Session, SessionState, Transition, TurnState, Winner

__all__ = [
    "BotConfig", "ChannelConfig", "DiscordConfig", "GameConfig", "OfferConfig",
    "PaymentConfig", "PriceConfig", "QueueConfig", "StorageConfig", "TemplateConfig",
    "WalletConfig",
    "ChannelInfo", "ChatMessage", "Identity",
    "ActivityRecord", "CanSendResult", "ChannelClass", "ChannelKind", "GateResult",
    "IntentState", "PaymentIntent", "PendingOffer", "TransferResult",
    "Round", "Session", "SessionState", "Transition", "TurnState", "Winner",
]
