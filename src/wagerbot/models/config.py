"""Configuration models for the session engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

OFFER_PATTERN = r"\b\$?(\d+(?:\.\d{1,2})?)\s*(?:v|vs)\s*\$?(\d+(?:\.\d{1,2})?)\b"
DICE_RESULT_PATTERN = r"(?:rolled?\s*(?:a\s*)?|🎲\s*|\[\s*)([1-6])(?:\s*\])?"

ADDRESS_PATTERNS = {
    "LTC": r"^(?:L|M|3)[a-km-zA-HJ-NP-Z1-9]{26,33}$|^ltc1[a-z0-9]{35,60}$",
    "BTC": r"^(?:1|3)[a-km-zA-HJ-NP-Z1-9]{25,34}$|^bc1[a-z0-9]{35,60}$",
    "SOL": r"^[1-9A-HJ-NP-Za-km-z]{32,44}$",
}


@dataclass
class OfferConfig:
    """Public-channel offer matching."""

    tax_rate: Decimal = Decimal("0.05")
    min_reply_delay_ms: int = 2000
    max_reply_delay_ms: int = 3000
    offer_cooldown_ms: int = 8000
    offer_min_amount: Decimal = Decimal("1.00")
    offer_max_amount: Decimal = Decimal("100.00")
    pending_offer_ttl_s: int = 86400
    offer_pattern: str = OFFER_PATTERN


@dataclass
class QueueConfig:
    """Outbound egress spacing."""

    min_outbound_gap_ms: int = 2000
    max_outbound_gap_ms: int = 2500


@dataclass
class PaymentConfig:
    """Value-transfer gates and addresses."""

    enable_live_transfers: bool = False
    network: str = "LTC"
    min_payment_usd: Decimal = Decimal("1.00")
    max_payment_per_tx_usd: Decimal = Decimal("100.00")
    max_daily_usd: Decimal = Decimal("500.00")
    min_confirmations: int = 1
    address_sender_policy: str = "coordinator"  # "coordinator" | "trusted"
    address_allowlist: list[str] = field(default_factory=list)
    self_addresses: list[str] = field(default_factory=list)
    payout_addresses: dict[str, str] = field(default_factory=dict)
    address_patterns_by_network: dict[str, str] = field(
        default_factory=lambda: dict(ADDRESS_PATTERNS)
    )


@dataclass
class GameConfig:
    """Dice mini-game coordination."""

    wins_needed: int = 5
    bot_wins_ties: bool = True
    dice_command_token: str = "-roll"
    dice_result_pattern: str = DICE_RESULT_PATTERN
    dice_bot_ids: list[str] = field(default_factory=list)
    turn_trigger_tokens: list[str] = field(
        default_factory=lambda: ["roll", "go", "turn", "next", "your"]
    )
    payment_confirm_phrases: list[str] = field(
        default_factory=lambda: [
            "confirmed", "received", "got it", "got payment", "paid",
            "both paid", "payments confirmed", "gl", "good luck",
            "start game", "ready to go",
        ]
    )
    action_delay_min_ms: int = 800
    action_delay_max_ms: int = 1500
    human_delay_min_ms: int = 1500
    human_delay_max_ms: int = 3000
    vouch_delay_ms: int = 5000


@dataclass
class ChannelConfig:
    """Channel classification and recognized actors."""

    session_name_patterns: list[str] = field(default_factory=lambda: ["ticket", "order-"])
    excluded_name_patterns: list[str] = field(
        default_factory=lambda: ["bot-commands", "commands", "general", "rules", "announcements"]
    )
    monitored_channel_ids: list[str] = field(default_factory=list)
    blocklisted_channel_ids: list[str] = field(default_factory=list)
    coordinator_ids: list[str] = field(default_factory=list)
    trusted_sender_ids: list[str] = field(default_factory=list)
    vouch_channel_id: str = ""
    cancellation_keywords: list[str] = field(
        default_factory=lambda: ["void", "cancel", "refund", "reset"]
    )
    wallet_command: str = "!wallet"


@dataclass
class TemplateConfig:
    """Outbound message templates."""

    offer: list[str] = field(
        default_factory=lambda: [
            "{ours} vs your {theirs} ft5, dice ft5 I win ties, create ticket",
            "{ours} v {theirs}? ft5 i win ties, open a ticket",
            "I'll do {ours} vs {theirs}, ft5 bot wins ties. ticket?",
        ]
    )
    payment_sent: str = "Sent ${amount}. TX: {txid}"
    win: str = "GG! 🎉 Send ${amount} ({network}) to:"
    loss: str = "GG, well played!"
    vouch: str = "+rep {coordinator} won ${amount} vs {opponent}, smooth and fast"


@dataclass
class AdvertConfig:
    """Periodic promotional posts in the public channels."""

    enabled: bool = False
    interval_s: int = 300
    jitter_s: float = 2.0
    max_active_sessions: int = 3
    messages: list[str] = field(default_factory=lambda: ["Waiting for wagers!"])
    channel_ids: list[str] = field(default_factory=list)  # empty: the monitored channels


@dataclass
class StorageConfig:
    """Snapshot, audit log and retention settings."""

    state_path: str = "~/.wagerbot/state.json"
    activity_db_path: str = "~/.wagerbot/activity.db"
    autosave_interval_s: int = 30
    processed_message_cap: int = 1000
    idle_horizon_s: int = 3600
    complete_grace_s: int = 86400
    sweep_interval_s: int = 300


@dataclass
class DiscordConfig:
    """Chat transport connection."""

    token: str = ""
    api_base: str = "https://discord.com/api/v10"
    gateway_url: str = "wss://gateway.discord.gg/?v=10&encoding=json"
    max_reconnects: int = 5
    request_retries: int = 3


@dataclass
class WalletConfig:
    """Wallet daemon JSON-RPC backend."""

    rpc_url: str = ""
    rpc_user: str = ""
    rpc_password: str = ""
    timeout: int = 30


@dataclass
class PriceConfig:
    """USD price feed."""

    cache_ttl_s: int = 300
    max_price_deviation_pct: int = 25
    timeout: int = 10


@dataclass
class BotConfig:
    """Complete wagerbot configuration."""

    log_level: str = "info"
    verification_mode: bool = False
    webhook_url: str = ""

    offers: OfferConfig = field(default_factory=OfferConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    payments: PaymentConfig = field(default_factory=PaymentConfig)
    game: GameConfig = field(default_factory=GameConfig)
    channels: ChannelConfig = field(default_factory=ChannelConfig)
    templates: TemplateConfig = field(default_factory=TemplateConfig)
    advert: AdvertConfig = field(default_factory=AdvertConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    price: PriceConfig = field(default_factory=PriceConfig)
