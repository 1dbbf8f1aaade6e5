"""Tests 122-123: The built-in invariant suite."""

from __future__ import annotations

from wagerbot.verification import CHECKS, run_verification


# ── Test 122: Every check passes (Tier 2) ─────────────────────────


async def test_all_checks_pass():
    results = await run_verification()
    assert [r.name for r in results] == [name for name, _ in CHECKS]
    failures = {r.name: r.detail for r in results if not r.passed}
    assert failures == {}


# ── Test 123: Selecting checks (Tier 1) ───────────────────────────


async def test_only_runs_named_checks():
    results = await run_verification(["terms_mismatch", "vouch_dedupe"])
    assert [r.name for r in results] == ["terms_mismatch", "vouch_dedupe"]
    assert all(r.passed for r in results)
