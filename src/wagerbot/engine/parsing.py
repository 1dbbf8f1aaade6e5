"""Text recognizers for offers, addresses, dice results and directives."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from functools import lru_cache

CENT = Decimal("0.01")
ADDRESS_STRIP = "`<>.,;:\"'!?()[]{}"

GAME_START_PATTERN = re.compile(
    r"(?:ft\d+|game|dice|start|ready|gl|confirm).*?(?:<@!?(\d+)>|\b(\w+))\s+(?:go(?:es)?\s+|rolls?\s+)?first\b",
    re.IGNORECASE,
)
FIRST_TO_PATTERN = re.compile(r"\bft\s*(\d{1,2})\b", re.IGNORECASE)
BOT_FIRST_PATTERN = re.compile(r"\b(?:bot|you)\s+(?:go(?:es)?\s+|roll(?:s)?\s+)?first\b", re.IGNORECASE)
MENTION_PATTERN = re.compile(r"<@!?(\d+)>")


@lru_cache(maxsize=64)
def _compile(pattern: str, flags: int = re.IGNORECASE) -> re.Pattern:
    return re.compile(pattern, flags)


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_our_amount(offer: Decimal, tax_rate: Decimal) -> Decimal:
    """offer x (1 + tax), rounded half-up to cents."""
    return to_cents(offer * (Decimal("1") + tax_rate))


def make_offer_id(participant_id: str, timestamp: float) -> str:
    return hashlib.sha256(f"{participant_id}:{timestamp}".encode("utf-8")).hexdigest()[:16]


def parse_offer(content: str, pattern: str) -> tuple[Decimal, Decimal] | None:
    """Both sides of an ``<amount> v|vs <amount>`` advertisement."""
    match = _compile(pattern).search(content)
    if not match:
        return None
    try:
        return Decimal(match.group(1)), Decimal(match.group(2))
    except (InvalidOperation, IndexError):
        return None


def extract_address(content: str, network: str, patterns: dict[str, str]) -> str | None:
    """First whitespace-separated token that fully matches the network's address pattern."""
    pattern = patterns.get(network.upper())
    if not pattern:
        return None
    regex = _compile(pattern, 0)
    for token in content.split():
        candidate = token.strip(ADDRESS_STRIP)
        if candidate and regex.fullmatch(candidate):
            return candidate
    return None


def parse_dice_result(content: str, pattern: str) -> int | None:
    match = _compile(pattern).search(content)
    if not match:
        return None
    value = int(match.group(1))
    return value if 1 <= value <= 6 else None


@dataclass
class GameStart:
    """A recognized game-start directive."""

    bot_goes_first: bool
    first_token: str | None
    wins_needed: int | None


def parse_game_start(content: str, self_id: str, self_name: str = "") -> GameStart | None:
    """Recognize ``<start keyword> ... <who> ... first``.

    Our side goes first when the directive mentions our id, names us, or says
    "bot first" / "you first".
    """
    match = GAME_START_PATTERN.search(content)
    if not match:
        return None
    mentioned, word = match.group(1), match.group(2)
    head = content[: match.end()]

    bot_first = False
    if mentioned and mentioned == self_id:
        bot_first = True
    elif any(m == self_id for m in MENTION_PATTERN.findall(head)):
        bot_first = True
    elif BOT_FIRST_PATTERN.search(content):
        bot_first = True
    elif self_name and re.search(rf"\b{re.escape(self_name)}\b", head, re.IGNORECASE):
        bot_first = True

    return GameStart(
        bot_goes_first=bot_first,
        first_token=mentioned or word,
        wins_needed=parse_first_to(content),
    )


def parse_first_to(content: str) -> int | None:
    match = FIRST_TO_PATTERN.search(content)
    if not match:
        return None
    value = int(match.group(1))
    return value if value > 0 else None


def _contains_phrase(content: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", content, re.IGNORECASE) is not None


def is_payment_confirmation(content: str, phrases: list[str]) -> bool:
    return any(_contains_phrase(content, p) for p in phrases if p)


def find_cancellation(content: str, keywords: list[str]) -> str | None:
    for keyword in keywords:
        if keyword and _contains_phrase(content, keyword):
            return keyword.lower()
    return None


def has_turn_trigger(content: str, tokens: list[str]) -> bool:
    return any(_contains_phrase(content, t) for t in tokens if t)


def mentions_user(content: str, user_id: str, mentions: list[str] | None = None) -> bool:
    if mentions and user_id in mentions:
        return True
    return user_id in MENTION_PATTERN.findall(content)


def round_down_native(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)
