"""
Tests for the similar-projects ranking and group-buy progress.
"""

from types import SimpleNamespace

from khareedo.services.group_buy import group_buy_progress, progress_for_count
from khareedo.services.similarity import average_price, rank_similar, score_candidate


def listing(id, location, price, developer_id="dev-a"):
    return SimpleNamespace(
        id=id,
        location=location,
        developer_id=developer_id,
        offer_price=0,
        developer_price=0,
        configurations=[{"unitType": "2 BHK", "subConfigurations": [{"price": price}]}],
    )


REFERENCE = listing("ref", "Baner, Pune, Maharashtra", 5_000_000)


class TestScoring:

    def test_same_area_within_budget_scores_high(self):
        candidate = listing("c1", "Baner, Mumbai, Maharashtra", 5_900_000, developer_id="dev-b")
        match = score_candidate(REFERENCE, candidate)
        assert match.score >= 90
        assert match.both_match

    def test_same_developer_bonus_needs_a_match(self):
        near = listing("c1", "Baner, Pune, Maharashtra", 5_200_000)
        assert score_candidate(REFERENCE, near).score == 110

        unrelated = listing("c2", "Salt Lake, Kolkata, West Bengal", 20_000_000)
        assert score_candidate(REFERENCE, unrelated).score == 0

    def test_partial_budget_band(self):
        # 40% apart: halfway through the 30-50% band
        candidate = listing("c1", "Wakad, Pune, Maharashtra", 7_000_000, developer_id="dev-b")
        match = score_candidate(REFERENCE, candidate)
        assert not match.budget_match
        assert match.location_match
        assert match.score == 50

    def test_state_only_is_not_a_location_match(self):
        candidate = listing("c1", "Kothrud, Nashik, Maharashtra", 5_000_000, developer_id="dev-b")
        match = score_candidate(REFERENCE, candidate)
        assert match.score == 70
        assert match.budget_match and not match.location_match

    def test_token_overlap_fallback(self):
        candidate = listing("c1", "Near Pune Station Baner Road", 5_000_000, developer_id="dev-b")
        match = score_candidate(REFERENCE, candidate)
        assert match.location_match
        assert match.score == 70

    def test_average_price_falls_back_to_listing_price(self):
        bare = SimpleNamespace(configurations=[], offer_price="45 Lakh", developer_price=6_000_000)
        assert average_price(bare) == 4_500_000


class TestRankSimilar:

    def test_orders_and_excludes(self):
        both = listing("both", "Baner, Mumbai, Maharashtra", 5_500_000, developer_id="dev-b")
        location_only = listing("loc", "Wakad, Pune, Maharashtra", 7_000_000, developer_id="dev-b")
        far = listing("far", "Salt Lake, Kolkata, West Bengal", 9_000_000, developer_id="dev-b")

        ranked = rank_similar(REFERENCE, [location_only, far, both, REFERENCE])
        assert [m.property.id for m in ranked] == ["both", "loc"]

    def test_limit(self):
        candidates = [listing(f"c{i}", "Baner, Pune, Maharashtra", 5_000_000 + i * 10_000) for i in range(5)]
        assert len(rank_similar(REFERENCE, candidates, limit=3)) == 3
        assert rank_similar(REFERENCE, candidates, limit=0) == []


class TestGroupBuyProgress:

    def test_partial_progress(self):
        progress = group_buy_progress(10, ["u1", "u2", "u3", "u4"])
        assert progress.progress_percentage == 40
        assert not progress.is_minimum_met
        assert progress.remaining == 6

    def test_participants_are_deduplicated(self):
        leads = [SimpleNamespace(user_id="u1"), SimpleNamespace(user_id="u1"), {"userId": "u2"}]
        progress = group_buy_progress(4, leads)
        assert progress.joined == 2
        assert progress.progress_percentage == 50

    def test_zero_threshold(self):
        progress = group_buy_progress(0, ["u1"])
        assert progress.progress_percentage == 0
        assert progress.is_minimum_met

    def test_caps_at_one_hundred(self):
        progress = progress_for_count(3, 5)
        assert progress.progress_percentage == 100
        assert progress.is_minimum_met
        assert "unlocked" in progress.message

    def test_message_counts_remaining(self):
        assert "1 more buyer needed" in progress_for_count(3, 2).message
        assert "2 more buyers needed" in progress_for_count(3, 1).to_dict()["message"]
