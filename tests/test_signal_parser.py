"""Tests for trailbot/signal_parser.py"""

import random
from decimal import Decimal

import pytest

from trailbot.signal_parser import Direction, ParseFailure, TradeIntent, parse

D = Decimal

SIGNAL = """📩Pair: btcusdt
📉Direction: LONG
💯Leverage: Cross 20x
📊Entry: 100
✅Target1: 110
✅Target2: 120
✅Target3: 130
⛔Stop Loss: 95"""


class TestParseComplete:
    def test_all_fields(self):
        result = parse(SIGNAL)
        assert result == TradeIntent(
            symbol="BTCUSDT",
            direction=Direction.LONG,
            margin_mode="Cross",
            leverage=20,
            entry=D("100"),
            stop_loss=D("95"),
            targets=(D("110"), D("120"), D("130")),
        )

    def test_line_order_does_not_matter(self):
        lines = SIGNAL.splitlines()
        rng = random.Random(7)
        for _ in range(10):
            shuffled = lines[:]
            rng.shuffle(shuffled)
            result = parse("\n".join(shuffled))
            assert isinstance(result, TradeIntent)
            assert result.symbol == "BTCUSDT"
            assert result.leverage == 20
            assert result.stop_loss == D("95")
            # targets follow text order, so compare as a set here
            assert set(result.targets) == {D("110"), D("120"), D("130")}

    def test_targets_keep_text_order(self):
        text = SIGNAL.replace("✅Target1: 110", "✅Target1: 125")
        result = parse(text)
        assert result.targets == (D("125"), D("120"), D("130"))

    def test_short_signal_with_decimals(self):
        text = (
            "Pair: ETHUSDT\nDirection: short\nLeverage: Isolated 10x\n"
            "Entry: 50.25\nTarget: 45.5\nTarget: 40\nStop Loss: 52.125"
        )
        result = parse(text)
        assert result.direction is Direction.SHORT
        assert result.margin_mode == "Isolated"
        assert result.entry == D("50.25")
        assert result.targets == (D("45.5"), D("40"))
        assert result.stop_loss == D("52.125")

    def test_missing_stop_loss_is_valid(self):
        text = "\n".join(ln for ln in SIGNAL.splitlines() if "Stop Loss" not in ln)
        result = parse(text)
        assert isinstance(result, TradeIntent)
        assert result.stop_loss is None

    def test_idempotent(self):
        assert parse(SIGNAL) == parse(SIGNAL)
        bad = "Pair: BTCUSDT"
        assert parse(bad) == parse(bad)

    def test_surrounding_chatter_ignored(self):
        text = "🔥 New signal 🔥\n\n" + SIGNAL + "\n\nGood luck!"
        assert isinstance(parse(text), TradeIntent)


class TestParseFailure:
    @pytest.mark.parametrize("field", ["Pair", "Direction", "Leverage", "Entry"])
    def test_missing_required_field(self, field):
        text = "\n".join(ln for ln in SIGNAL.splitlines() if field not in ln)
        result = parse(text)
        assert isinstance(result, ParseFailure)

    def test_missing_targets(self):
        text = "\n".join(ln for ln in SIGNAL.splitlines() if "Target" not in ln)
        result = parse(text)
        assert isinstance(result, ParseFailure)
        assert "targets" in result.reason

    def test_empty_text(self):
        assert isinstance(parse(""), ParseFailure)

    def test_unknown_direction_is_missing(self):
        result = parse(SIGNAL.replace("LONG", "SIDEWAYS"))
        assert isinstance(result, ParseFailure)
        assert "direction" in result.reason

    def test_malformed_entry_is_missing(self):
        result = parse(SIGNAL.replace("Entry: 100", "Entry: 1.2.3"))
        assert isinstance(result, ParseFailure)
        assert "entry" in result.reason

    def test_malformed_target_is_skipped(self):
        result = parse(SIGNAL.replace("Target2: 120", "Target2: ..."))
        assert isinstance(result, TradeIntent)
        assert result.targets == (D("110"), D("130"))

    def test_malformed_stop_loss_becomes_undefined(self):
        result = parse(SIGNAL.replace("Stop Loss: 95", "Stop Loss: 9.5.1"))
        assert isinstance(result, TradeIntent)
        assert result.stop_loss is None

    def test_never_raises(self):
        for text in ["\x00", "Target:", "Leverage: Cross 0x", "Entry: 0", "::::"]:
            assert isinstance(parse(text), ParseFailure)


class TestDirection:
    def test_sides(self):
        assert Direction.LONG.entry_side == "BUY"
        assert Direction.LONG.exit_side == "SELL"
        assert Direction.SHORT.entry_side == "SELL"
        assert Direction.SHORT.exit_side == "BUY"

    def test_reached(self):
        assert Direction.LONG.reached(D("110"), D("110"))
        assert not Direction.LONG.reached(D("109.99"), D("110"))
        assert Direction.SHORT.reached(D("44"), D("45"))
        assert not Direction.SHORT.reached(D("46"), D("45"))
