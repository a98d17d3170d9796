"""Tests for the odds blob parser."""

from tipgen.llm.odds import (
    BttsMarket,
    DoubleChanceMarket,
    HandicapMarket,
    MatchResultMarket,
    TotalsMarket,
    UnknownMarket,
    normalize_handicap_key,
    normalize_total_key,
    parse_odds_blob,
)


class TestSyncShape:
    """Blob shape written by match sync."""

    def test_all_known_markets(self):
        """Every known market becomes its own variant; bookmaker is skipped."""
        markets = parse_odds_blob({
            "match_result": {"home_win": 2.1, "draw": 3.4, "away_win": 3.2},
            "over_under": {"over_2_5": 1.9, "under_2_5": 1.95},
            "btts": {"yes": 1.8, "no": 2.0},
            "double_chance": {"home_draw": 1.3, "home_away": 1.25, "away_draw": 1.6},
            "handicap": {"home_-1_5": 3.1, "away_1.5": 1.35},
            "bookmaker": "Bet365",
        })

        assert markets == [
            MatchResultMarket(home_win=2.1, draw=3.4, away_win=3.2),
            TotalsMarket(lines={"over_2.5": 1.9, "under_2.5": 1.95}),
            BttsMarket(yes=1.8, no=2.0),
            DoubleChanceMarket(home_draw=1.3, home_away=1.25, away_draw=1.6),
            HandicapMarket(lines={"home_-1.5": 3.1, "away_+1.5": 1.35}),
        ]

    def test_partial_match_result(self):
        """Missing prices stay None rather than being defaulted."""
        markets = parse_odds_blob({"match_result": {"home_win": 1.5}})
        assert markets == [MatchResultMarket(home_win=1.5)]


class TestLegacyShape:
    """List-of-bookmakers shape."""

    def test_first_entry_is_used(self):
        markets = parse_odds_blob({
            "h2h": [{"home": 1.9, "draw": 3.5, "away": 4.0}, {"home": 2.0, "draw": 3.3, "away": 3.9}],
            "totals": [{"over_2.5": 1.8, "under_2.5": 2.0, "over_7.5": 12.0}],
        })

        assert markets[0] == MatchResultMarket(home_win=1.9, draw=3.5, away_win=4.0)
        # 7.5 is not an exposed line
        assert markets[1] == TotalsMarket(lines={"over_2.5": 1.8, "under_2.5": 2.0})

    def test_sync_shape_wins_over_legacy(self):
        markets = parse_odds_blob({
            "match_result": {"home_win": 2.0, "draw": 3.0, "away_win": 4.0},
            "h2h": [{"home": 9.9, "draw": 9.9, "away": 9.9}],
        })
        assert markets == [MatchResultMarket(home_win=2.0, draw=3.0, away_win=4.0)]


class TestBadInput:
    """Parser is total: bad input yields fewer markets."""

    def test_non_dict_blob(self):
        assert parse_odds_blob(None) == []
        assert parse_odds_blob("odds") == []
        assert parse_odds_blob([1, 2]) == []

    def test_unusable_prices_dropped(self):
        markets = parse_odds_blob({
            "match_result": {"home_win": 0, "draw": -2, "away_win": "n/a"},
            "btts": {"yes": True, "no": "1.85"},
            "totals": [],
        })
        assert markets == [BttsMarket(yes=None, no=1.85)]

    def test_unknown_market_kept(self):
        markets = parse_odds_blob({"corners": {"over_9_5": 1.9}})
        assert markets == [UnknownMarket(key="corners", raw={"over_9_5": 1.9})]


class TestKeyNormalization:
    """Totals and handicap key spelling."""

    def test_total_keys(self):
        assert normalize_total_key("over_2_5") == "over_2.5"
        assert normalize_total_key("UNDER_0.5") == "under_0.5"
        assert normalize_total_key("over_2") is None
        assert normalize_total_key("total_2_5") is None

    def test_handicap_keys(self):
        assert normalize_handicap_key("home_-1_5") == "home_-1.5"
        assert normalize_handicap_key("away_1") == "away_+1"
        assert normalize_handicap_key("draw_1") is None
