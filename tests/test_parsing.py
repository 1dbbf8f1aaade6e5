"""Tests 1-12: Text recognizers for offers, addresses, dice and directives."""

from __future__ import annotations

from decimal import Decimal

from wagerbot.engine import parsing
from wagerbot.models.config import ADDRESS_PATTERNS, DICE_RESULT_PATTERN, OFFER_PATTERN, GameConfig

from tests.conftest import PARTICIPANT_ADDRESS, SELF_ID, SELF_NAME


# ── Test 1: Amount rounding (Tier 1) ──────────────────────────────


def test_compute_our_amount_rounds_half_up_to_cents():
    tax = Decimal("0.05")
    assert parsing.compute_our_amount(Decimal("10"), tax) == Decimal("10.50")
    assert parsing.compute_our_amount(Decimal("0.99"), tax) == Decimal("1.04")
    assert parsing.compute_our_amount(Decimal("33.33"), tax) == Decimal("35.00")
    assert parsing.to_cents(Decimal("2.005")) == Decimal("2.01")


# ── Test 2: Offer recognition (Tier 1) ────────────────────────────


def test_parse_offer_forms():
    assert parsing.parse_offer("anyone 10v10?", OFFER_PATTERN) == (Decimal("10"), Decimal("10"))
    assert parsing.parse_offer("$5 vs $5 dice", OFFER_PATTERN) == (Decimal("5"), Decimal("5"))
    assert parsing.parse_offer("12.50v12.50", OFFER_PATTERN) == (Decimal("12.50"), Decimal("12.50"))
    assert parsing.parse_offer("10 vs 20", OFFER_PATTERN) == (Decimal("10"), Decimal("20"))


def test_parse_offer_rejects_chatter():
    assert parsing.parse_offer("hello there", OFFER_PATTERN) is None
    assert parsing.parse_offer("v10", OFFER_PATTERN) is None


# ── Test 3: Address extraction (Tier 1) ───────────────────────────


def test_extract_address_finds_token():
    content = f"send to {PARTICIPANT_ADDRESS} please"
    assert parsing.extract_address(content, "LTC", ADDRESS_PATTERNS) == PARTICIPANT_ADDRESS


def test_extract_address_strips_wrapping_punctuation():
    content = f"`{PARTICIPANT_ADDRESS}`."
    assert parsing.extract_address(content, "ltc", ADDRESS_PATTERNS) == PARTICIPANT_ADDRESS


def test_extract_address_none():
    assert parsing.extract_address("no address here", "LTC", ADDRESS_PATTERNS) is None
    assert parsing.extract_address(PARTICIPANT_ADDRESS, "DOGE", ADDRESS_PATTERNS) is None


# ── Test 4: Dice results (Tier 1) ─────────────────────────────────


def test_parse_dice_result():
    assert parsing.parse_dice_result("<@123> rolled a 6", DICE_RESULT_PATTERN) == 6
    assert parsing.parse_dice_result("🎲 4", DICE_RESULT_PATTERN) == 4
    assert parsing.parse_dice_result("result: [3]", DICE_RESULT_PATTERN) == 3
    assert parsing.parse_dice_result("rolled a 7", DICE_RESULT_PATTERN) is None
    assert parsing.parse_dice_result("gl hf", DICE_RESULT_PATTERN) is None


# ── Test 5: Game-start directive (Tier 1) ─────────────────────────


def test_game_start_mentioning_us():
    start = parsing.parse_game_start(f"dice ft5 <@{SELF_ID}> first", SELF_ID, SELF_NAME)
    assert start is not None
    assert start.bot_goes_first is True
    assert start.first_token == SELF_ID
    assert start.wins_needed == 5


def test_game_start_other_side_first():
    start = parsing.parse_game_start("ft3 <@300000000000000001> first", SELF_ID, SELF_NAME)
    assert start is not None
    assert start.bot_goes_first is False
    assert start.wins_needed == 3
    assert start.first_token == "300000000000000001"


def test_game_start_token_is_the_one_before_first():
    start = parsing.parse_game_start("ready ft5 <@300000000000000001> goes first", SELF_ID, SELF_NAME)
    assert start is not None
    assert start.first_token == "300000000000000001"
    assert start.wins_needed == 5
    assert parsing.parse_game_start("dice ft5 firstly", SELF_ID, SELF_NAME) is None


def test_game_start_by_name_or_phrase():
    by_name = parsing.parse_game_start("dice wagerbot goes first", SELF_ID, SELF_NAME)
    assert by_name is not None and by_name.bot_goes_first
    assert by_name.first_token == "wagerbot"
    by_phrase = parsing.parse_game_start("game on, bot first", SELF_ID, SELF_NAME)
    assert by_phrase is not None and by_phrase.bot_goes_first
    assert by_phrase.wins_needed is None


def test_game_start_absent():
    assert parsing.parse_game_start("hello there", SELF_ID, SELF_NAME) is None


def test_parse_first_to():
    assert parsing.parse_first_to("ft7 dice") == 7
    assert parsing.parse_first_to("FT 3") == 3
    assert parsing.parse_first_to("ft0") is None
    assert parsing.parse_first_to("first to win") is None


# ── Test 6: Phrase matching (Tier 1) ──────────────────────────────


def test_payment_confirmation_uses_whole_phrases():
    phrases = GameConfig().payment_confirm_phrases
    assert parsing.is_payment_confirmation("both paid, gl", phrases)
    assert parsing.is_payment_confirmation("Payments confirmed!", phrases)
    assert not parsing.is_payment_confirmation("glad to be here", phrases)


def test_find_cancellation():
    keywords = ["void", "cancel", "refund", "reset"]
    assert parsing.find_cancellation("please VOID this", keywords) == "void"
    assert parsing.find_cancellation("we should avoid that", keywords) is None
    assert parsing.find_cancellation("reset pls", keywords) == "reset"


def test_turn_trigger_and_mentions():
    tokens = GameConfig().turn_trigger_tokens
    assert parsing.has_turn_trigger("your turn", tokens)
    assert not parsing.has_turn_trigger("hello", tokens)
    assert parsing.mentions_user("<@!123> hi", "123")
    assert parsing.mentions_user("hi", "123", mentions=["123"])
    assert not parsing.mentions_user("<@1234> hi", "123")


# ── Test 7: Identifiers and native rounding (Tier 1) ──────────────


def test_offer_id_is_stable():
    first = parsing.make_offer_id("300000000000000001", 1_700_000_000.0)
    assert first == parsing.make_offer_id("300000000000000001", 1_700_000_000.0)
    assert first != parsing.make_offer_id("300000000000000001", 1_700_000_001.0)
    assert len(first) == 16


def test_round_down_native():
    assert parsing.round_down_native(Decimal("0.123456789")) == Decimal("0.12345678")
    assert parsing.round_down_native(Decimal("10.50") / Decimal("80")) == Decimal("0.13125000")
