"""Tests for the proposition parser and grouper."""

import pytest

from evscout.engine.parser import (
    OpticOddsAdapter,
    bookmaker_display,
    group_propositions,
    market_display,
    parse_propositions,
)
from evscout.models.schemas import Side
from tests.fakes import odds_record


@pytest.fixture
def adapter():
    return OpticOddsAdapter()


class TestOpticOddsAdapter:
    """Tests for record decoding."""

    def test_player_prop(self, adapter):
        prop = adapter.normalize(odds_record("Unibet DK", "over", -110), "f1")

        assert prop.subject == "LeBron James"
        assert prop.market == "player_points"
        assert prop.line == 25.5
        assert prop.side == Side.OVER
        assert prop.bookmaker == "unibet_denmark_"
        assert prop.price == pytest.approx(1.90909, rel=1e-4)
        assert prop.player_id == "p1"

    def test_side_and_line_from_label(self, adapter):
        record = {
            "sportsbook": "Pinnacle",
            "market_id": "total_goals",
            "name": "Under 2.5",
            "selection": "",
            "price": 120,
        }
        prop = adapter.normalize(record, "f1")

        assert prop.side == Side.UNDER
        assert prop.line == 2.5
        assert prop.subject == "match"
        assert prop.price == pytest.approx(2.2)

    def test_team_prop_subject(self, adapter):
        record = {
            "sportsbook": "bet365",
            "market_id": "team_total_goals",
            "name": "Arsenal Over 1.5",
            "selection": "Arsenal",
            "selection_line": "over",
            "points": 1.5,
            "price": -150,
        }
        assert adapter.normalize(record, "f1").subject == "Arsenal"

    def test_yes_no_default_line(self, adapter):
        record = {
            "sportsbook": "Betano",
            "market_id": "player_double_double",
            "name": "Nikola Jokic Yes",
            "selection": "Nikola Jokic",
            "price": -250,
            "player_id": "p7",
        }
        prop = adapter.normalize(record, "f1")
        assert prop.side == Side.YES
        assert prop.line == 0.5
        assert prop.subject == "Nikola Jokic"

    @pytest.mark.parametrize("changes", [
        {"price": 0},
        {"price": "n/a"},
        {"sportsbook": None},
        {"selection_line": None, "name": "LeBron James 25.5", "selection": "LeBron James"},
    ])
    def test_unusable_records_dropped(self, adapter, changes):
        record = odds_record("bet365", "over", 120)
        record.update(changes)
        assert adapter.normalize(record, "f1") is None

    def test_unknown_bookmaker_label_normalized(self, adapter):
        assert adapter.normalize_bookmaker("Some Book") == "some_book"


class TestParsePropositions:
    """Tests for parse + dedupe."""

    def test_latest_price_wins(self, adapter):
        records = [
            odds_record("bet365", "over", 110),
            odds_record("bet365", "over", 125),
        ]
        props = parse_propositions(records, adapter, "f1")
        assert len(props) == 1
        assert props[0].price == pytest.approx(2.25)

    def test_market_filter(self, adapter):
        records = [
            odds_record("bet365", "over", 110),
            odds_record("bet365", "over", 110, subject="match", market="total_points", player_id=None),
        ]
        props = parse_propositions(records, adapter, "f1", market_filter="player_")
        assert [p.market for p in props] == ["player_points"]

    def test_non_dict_records_skipped(self, adapter):
        props = parse_propositions(["junk", None, odds_record("bet365", "under", -105)], adapter, "f1")
        assert len(props) == 1


class TestGroupPropositions:
    """Tests for grouping into per-bookmaker quotes."""

    def test_pairs_sides_per_bookmaker_and_line(self, adapter):
        records = [
            odds_record("Pinnacle", "over", -110),
            odds_record("Pinnacle", "under", -110),
            odds_record("bet365", "over", 110),
            odds_record("bet365", "over", 120, line=26.5),
            odds_record("bet365", "over", 100, subject="Anthony Davis", player_id="p2"),
        ]
        groups = group_propositions(parse_propositions(records, adapter, "f1"), adapter)
        by_subject = {g.subject: g for g in groups}

        lebron = by_subject["LeBron James"]
        assert lebron.market_display == "Points"
        assert lebron.is_player_prop
        assert len(lebron.quotes) == 3

        pinnacle = next(q for q in lebron.quotes if q.bookmaker == "pinnacle")
        assert pinnacle.pair(Side.OVER) is not None
        bet365 = [q for q in lebron.quotes if q.bookmaker == "bet365"]
        assert all(q.pair(Side.OVER) is None for q in bet365)

        assert len(by_subject["Anthony Davis"].quotes) == 1

    def test_line_buckets(self, adapter):
        records = [
            odds_record("bet365", "over", 110, line=25.5),
            odds_record("bet365", "over", 105, line=25.4),
            odds_record("betano", "over", 100, line=25.5),
        ]
        group = group_propositions(parse_propositions(records, adapter, "f1"))[0]
        buckets = group.line_buckets({"bet365"})
        assert list(buckets) == [25.5]
        assert len(buckets[25.5]) == 2


class TestDisplayNames:
    def test_known_and_unknown(self):
        assert bookmaker_display("unibet_denmark_") == "Unibet DK"
        assert bookmaker_display("mystery") == "mystery"
        assert market_display("player_made_threes") == "3-Pointers"
        assert market_display("player_blocks_+_steals") == "Player Blocks + Steals"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
