"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from wagerbot.errors import ConfigError
from wagerbot.models.config import BotConfig

TRUE_VALUES = {"1", "true", "yes", "on"}


def _decimal(value, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigError(f"{name}: not a decimal amount: {value!r}") from exc


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def _ids(values) -> list[str]:
    return [str(v) for v in values]


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "WAGERBOT_",
) -> BotConfig:
    """Load bot configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (WAGERBOT_TOKEN, etc.)
        2. TOML config file
        3. Defaults from BotConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                try:
                    raw = tomllib.load(f)
                except tomllib.TOMLDecodeError as exc:
                    raise ConfigError(f"{p}: {exc}") from exc

    cfg = BotConfig()

    # ── Bot section ────────────────────────────────────────
    bot = raw.get("bot", {})
    if v := bot.get("log_level"):
        cfg.log_level = str(v)
    if "verification_mode" in bot:
        cfg.verification_mode = _flag(bot["verification_mode"])
    if v := bot.get("webhook_url"):
        cfg.webhook_url = str(v)

    # ── Offers section ─────────────────────────────────────
    offers = raw.get("offers", {})
    if (v := offers.get("tax_rate")) is not None:
        cfg.offers.tax_rate = _decimal(v, "offers.tax_rate")
    if (v := offers.get("min_reply_delay_ms")) is not None:
        cfg.offers.min_reply_delay_ms = int(v)
    if (v := offers.get("max_reply_delay_ms")) is not None:
        cfg.offers.max_reply_delay_ms = int(v)
    if (v := offers.get("offer_cooldown_ms")) is not None:
        cfg.offers.offer_cooldown_ms = int(v)
    if (v := offers.get("offer_min_amount")) is not None:
        cfg.offers.offer_min_amount = _decimal(v, "offers.offer_min_amount")
    if (v := offers.get("offer_max_amount")) is not None:
        cfg.offers.offer_max_amount = _decimal(v, "offers.offer_max_amount")
    if (v := offers.get("pending_offer_ttl_s")) is not None:
        cfg.offers.pending_offer_ttl_s = int(v)
    if v := offers.get("offer_pattern"):
        cfg.offers.offer_pattern = str(v)

    # ── Queue section ──────────────────────────────────────
    queue = raw.get("queue", {})
    if (v := queue.get("min_outbound_gap_ms")) is not None:
        cfg.queue.min_outbound_gap_ms = int(v)
    if (v := queue.get("max_outbound_gap_ms")) is not None:
        cfg.queue.max_outbound_gap_ms = int(v)

    # ── Payments section ───────────────────────────────────
    payments = raw.get("payments", {})
    if "enable_live_transfers" in payments:
        cfg.payments.enable_live_transfers = _flag(payments["enable_live_transfers"])
    if v := payments.get("network"):
        cfg.payments.network = str(v).upper()
    if (v := payments.get("min_payment_usd")) is not None:
        cfg.payments.min_payment_usd = _decimal(v, "payments.min_payment_usd")
    if (v := payments.get("max_payment_per_tx_usd")) is not None:
        cfg.payments.max_payment_per_tx_usd = _decimal(v, "payments.max_payment_per_tx_usd")
    if (v := payments.get("max_daily_usd")) is not None:
        cfg.payments.max_daily_usd = _decimal(v, "payments.max_daily_usd")
    if (v := payments.get("min_confirmations")) is not None:
        cfg.payments.min_confirmations = int(v)
    if v := payments.get("address_sender_policy"):
        cfg.payments.address_sender_policy = str(v)
    if (v := payments.get("address_allowlist")) is not None:
        cfg.payments.address_allowlist = [str(a) for a in v]
    if (v := payments.get("self_addresses")) is not None:
        cfg.payments.self_addresses = [str(a) for a in v]
    if v := payments.get("payout_addresses"):
        cfg.payments.payout_addresses = {str(k).upper(): str(a) for k, a in v.items()}
    if v := payments.get("address_patterns"):
        cfg.payments.address_patterns_by_network.update({str(k).upper(): str(p) for k, p in v.items()})

    # ── Game section ───────────────────────────────────────
    game = raw.get("game", {})
    if (v := game.get("wins_needed")) is not None:
        cfg.game.wins_needed = int(v)
    if "bot_wins_ties" in game:
        cfg.game.bot_wins_ties = _flag(game["bot_wins_ties"])
    if v := game.get("dice_command_token"):
        cfg.game.dice_command_token = str(v)
    if v := game.get("dice_result_pattern"):
        cfg.game.dice_result_pattern = str(v)
    if (v := game.get("dice_bot_ids")) is not None:
        cfg.game.dice_bot_ids = _ids(v)
    if v := game.get("turn_trigger_tokens"):
        cfg.game.turn_trigger_tokens = [str(t) for t in v]
    if v := game.get("payment_confirm_phrases"):
        cfg.game.payment_confirm_phrases = [str(t) for t in v]
    for key in (
        "action_delay_min_ms", "action_delay_max_ms",
        "human_delay_min_ms", "human_delay_max_ms", "vouch_delay_ms",
    ):
        if (v := game.get(key)) is not None:
            setattr(cfg.game, key, int(v))

    # ── Channels section ───────────────────────────────────
    channels = raw.get("channels", {})
    if v := channels.get("session_name_patterns"):
        cfg.channels.session_name_patterns = [str(p) for p in v]
    if (v := channels.get("excluded_name_patterns")) is not None:
        cfg.channels.excluded_name_patterns = [str(p) for p in v]
    for key in ("monitored_channel_ids", "blocklisted_channel_ids", "coordinator_ids", "trusted_sender_ids"):
        if (v := channels.get(key)) is not None:
            setattr(cfg.channels, key, _ids(v))
    if v := channels.get("vouch_channel_id"):
        cfg.channels.vouch_channel_id = str(v)
    if v := channels.get("cancellation_keywords"):
        cfg.channels.cancellation_keywords = [str(k).lower() for k in v]
    if v := channels.get("wallet_command"):
        cfg.channels.wallet_command = str(v)

    # ── Templates section ──────────────────────────────────
    templates = raw.get("templates", {})
    if v := templates.get("offer"):
        cfg.templates.offer = [str(t) for t in v]
    for key in ("payment_sent", "win", "loss", "vouch"):
        if v := templates.get(key):
            setattr(cfg.templates, key, str(v))

    # ── Advert section ─────────────────────────────────────
    advert = raw.get("advert", {})
    if "enabled" in advert:
        cfg.advert.enabled = _flag(advert["enabled"])
    if (v := advert.get("interval_s")) is not None:
        cfg.advert.interval_s = int(v)
    if (v := advert.get("jitter_s")) is not None:
        cfg.advert.jitter_s = float(v)
    if (v := advert.get("max_active_sessions")) is not None:
        cfg.advert.max_active_sessions = int(v)
    if v := advert.get("messages"):
        cfg.advert.messages = [str(m) for m in v]
    if (v := advert.get("channel_ids")) is not None:
        cfg.advert.channel_ids = _ids(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    for key in ("state_path", "activity_db_path"):
        if v := storage.get(key):
            setattr(cfg.storage, key, str(v))
    for key in (
        "autosave_interval_s", "processed_message_cap", "idle_horizon_s",
        "complete_grace_s", "sweep_interval_s",
    ):
        if (v := storage.get(key)) is not None:
            setattr(cfg.storage, key, int(v))

    # ── Discord section ────────────────────────────────────
    discord = raw.get("discord", {})
    if v := discord.get("token"):
        cfg.discord.token = str(v)
    if v := discord.get("api_base"):
        cfg.discord.api_base = str(v)
    if v := discord.get("gateway_url"):
        cfg.discord.gateway_url = str(v)
    if (v := discord.get("max_reconnects")) is not None:
        cfg.discord.max_reconnects = int(v)
    if (v := discord.get("request_retries")) is not None:
        cfg.discord.request_retries = int(v)

    # ── Wallet section ─────────────────────────────────────
    wallet = raw.get("wallet", {})
    if v := wallet.get("rpc_url"):
        cfg.wallet.rpc_url = str(v)
    if v := wallet.get("rpc_user"):
        cfg.wallet.rpc_user = str(v)
    if v := wallet.get("rpc_password"):
        cfg.wallet.rpc_password = str(v)
    if (v := wallet.get("timeout")) is not None:
        cfg.wallet.timeout = int(v)

    # ── Price section ──────────────────────────────────────
    price = raw.get("price", {})
    if (v := price.get("cache_ttl_s")) is not None:
        cfg.price.cache_ttl_s = int(v)
    if (v := price.get("max_price_deviation_pct")) is not None:
        cfg.price.max_price_deviation_pct = int(v)
    if (v := price.get("timeout")) is not None:
        cfg.price.timeout = int(v)

    # ── Environment variable overrides (highest priority) ──
    if token := os.environ.get(f"{env_prefix}TOKEN"):
        cfg.discord.token = token
    if live := os.environ.get(f"{env_prefix}ENABLE_LIVE_TRANSFERS"):
        cfg.payments.enable_live_transfers = _flag(live)
    if verify := os.environ.get(f"{env_prefix}VERIFICATION_MODE"):
        cfg.verification_mode = _flag(verify)
    if rpc := os.environ.get(f"{env_prefix}WALLET_RPC_URL"):
        cfg.wallet.rpc_url = rpc
    if user := os.environ.get(f"{env_prefix}WALLET_RPC_USER"):
        cfg.wallet.rpc_user = user
    if password := os.environ.get(f"{env_prefix}WALLET_RPC_PASSWORD"):
        cfg.wallet.rpc_password = password
    if hook := os.environ.get(f"{env_prefix}WEBHOOK_URL"):
        cfg.webhook_url = hook
    if state := os.environ.get(f"{env_prefix}STATE_PATH"):
        cfg.storage.state_path = state
    for network in cfg.payments.address_patterns_by_network:
        if addr := os.environ.get(f"{env_prefix}{network}_PAYOUT_ADDRESS"):
            cfg.payments.payout_addresses[network] = addr

    # Expand ~ in paths
    cfg.storage.state_path = str(Path(cfg.storage.state_path).expanduser())
    if cfg.storage.activity_db_path != ":memory:":
        cfg.storage.activity_db_path = str(Path(cfg.storage.activity_db_path).expanduser())

    return cfg


def validate_config(cfg: BotConfig, require_token: bool = True) -> list[str]:
    """Return a list of problems; empty means the config is usable."""
    problems: list[str] = []
    if require_token and not cfg.discord.token:
        problems.append("No transport token configured (set WAGERBOT_TOKEN or discord.token)")
    if not cfg.channels.coordinator_ids:
        problems.append("channels.coordinator_ids must name at least one coordinator")
    if not Decimal("0") <= cfg.offers.tax_rate < Decimal("1"):
        problems.append("offers.tax_rate must be in [0, 1)")
    if cfg.offers.min_reply_delay_ms > cfg.offers.max_reply_delay_ms:
        problems.append("offers.min_reply_delay_ms exceeds max_reply_delay_ms")
    if cfg.offers.offer_min_amount > cfg.offers.offer_max_amount:
        problems.append("offers.offer_min_amount exceeds offer_max_amount")
    if cfg.queue.min_outbound_gap_ms > cfg.queue.max_outbound_gap_ms:
        problems.append("queue.min_outbound_gap_ms exceeds max_outbound_gap_ms")
    if cfg.game.action_delay_min_ms > cfg.game.action_delay_max_ms:
        problems.append("game.action_delay_min_ms exceeds action_delay_max_ms")
    if cfg.game.human_delay_min_ms > cfg.game.human_delay_max_ms:
        problems.append("game.human_delay_min_ms exceeds human_delay_max_ms")
    if cfg.game.wins_needed < 1:
        problems.append("game.wins_needed must be at least 1")
    for name in ("autosave_interval_s", "sweep_interval_s", "processed_message_cap"):
        if getattr(cfg.storage, name) <= 0:
            problems.append(f"storage.{name} must be positive")
    if cfg.advert.enabled:
        if cfg.advert.interval_s <= 0:
            problems.append("advert.interval_s must be positive")
        if not (cfg.advert.channel_ids or cfg.channels.monitored_channel_ids):
            problems.append("advert is enabled but no channel to post in is configured")
    if cfg.payments.min_confirmations < 0:
        problems.append("payments.min_confirmations must not be negative")
    pay = cfg.payments
    if pay.min_payment_usd > pay.max_payment_per_tx_usd:
        problems.append("payments.min_payment_usd exceeds max_payment_per_tx_usd")
    if pay.max_payment_per_tx_usd > pay.max_daily_usd:
        problems.append("payments.max_payment_per_tx_usd exceeds max_daily_usd")
    if pay.network not in pay.address_patterns_by_network:
        problems.append(f"payments.network {pay.network!r} has no address pattern")
    if pay.address_sender_policy not in ("coordinator", "trusted"):
        problems.append("payments.address_sender_policy must be 'coordinator' or 'trusted'")
    if pay.enable_live_transfers and not cfg.wallet.rpc_url:
        problems.append("Live transfers enabled but wallet.rpc_url is not set")
    return problems
