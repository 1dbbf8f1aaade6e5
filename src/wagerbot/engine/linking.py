"""Fuzzy matching of a new session channel to a recent pending offer.

Channel names like ``ticket-alice-1234`` rarely carry more than a fragment
of the participant's identity, so candidates are scored:

    +100  participant id appears in the channel name
    +80   participant name (alphanumerics only, >= 3 chars) appears in it
    +0-30 recency, losing one point per 10 seconds of age

The best candidate wins only with score >= 50 and a lead of more than 30
over the runner-up.
"""

from __future__ import annotations

import re

from wagerbot.models.records import PendingOffer

MIN_SCORE = 50
MIN_LEAD = 30


def _normalize(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def score_offer(channel_name: str, offer: PendingOffer, now: float) -> int:
    name = channel_name.lower()
    compact = _normalize(channel_name)
    score = 0
    if offer.participant_id and offer.participant_id in name:
        score += 100
    username = _normalize(offer.participant_name)
    if len(username) >= 3 and username in compact:
        score += 80
    age = max(0.0, now - offer.created_at)
    score += max(0, 30 - int(age // 10))
    return score


def match_offer(channel_name: str, offers: list[PendingOffer], now: float) -> PendingOffer | None:
    if not channel_name or not offers:
        return None
    ranked = sorted(
        ((score_offer(channel_name, o, now), o) for o in offers),
        key=lambda pair: pair[0],
        reverse=True,
    )
    best_score, best = ranked[0]
    if best_score < MIN_SCORE:
        return None
    if len(ranked) > 1 and best_score - ranked[1][0] <= MIN_LEAD:
        return None
    return best
