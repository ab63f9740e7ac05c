from __future__ import annotations

import unittest

import config
from monitor.signal_feed import SignalFeed, SignalFeedError, parse_signals
from trading.models import TradeSignal
from trading.signal_selection import score_signal, select_entry_signal
from utils.http_client import HttpResult


class ConfigPatchMixin:
    def setUp(self) -> None:
        super().setUp()
        self._cfg_old: dict[str, object] = {}

    def patch_cfg(self, **kwargs: object) -> None:
        for key, value in kwargs.items():
            if key not in self._cfg_old:
                self._cfg_old[key] = getattr(config, key, None)
            setattr(config, key, value)

    def tearDown(self) -> None:
        for key, value in self._cfg_old.items():
            setattr(config, key, value)
        super().tearDown()


SIGNALS_BODY = {
    "success": True,
    "data": [
        {"latest_signal": {"token": "bonk", "action": 1, "confidence": 0.6, "urgency": 0.9, "price": "0.00002"}},
        {"latest_signal": {"token": "JUP", "action": 0, "confidence": 1.0, "urgency": 1.0}},
        {"latest_signal": {"token": "RAY", "action": -1, "confidence": "0.7", "urgency": 0.2, "explanation": "fade"}},
        {"latest_signal": None},
        {"token": "ORPHAN"},
    ],
}


class FakeHttp:
    def __init__(self, refresh: HttpResult, signals: HttpResult) -> None:
        self.refresh = refresh
        self.signals = signals
        self.posts: list[str] = []
        self.gets: list[str] = []

    async def post_json(self, url: str, **kwargs) -> HttpResult:
        self.posts.append(url)
        return self.refresh

    async def get_json(self, url: str, **kwargs) -> HttpResult:
        self.gets.append(url)
        return self.signals


class ParseSignalsTests(unittest.TestCase):
    def test_parses_rows_and_maps_actions(self) -> None:
        signals = parse_signals(SIGNALS_BODY)
        self.assertEqual([s.token for s in signals], ["BONK", "JUP", "RAY"])
        self.assertEqual([s.direction for s in signals], ["BUY", "NEUTRAL", "SELL"])
        self.assertAlmostEqual(signals[0].price, 0.00002)
        self.assertIsNone(signals[1].price)
        self.assertAlmostEqual(signals[2].confidence, 0.7)
        self.assertEqual(signals[2].explanation, "fade")

    def test_unsuccessful_or_malformed_body_yields_nothing(self) -> None:
        self.assertEqual(parse_signals({"success": False, "data": SIGNALS_BODY["data"]}), [])
        self.assertEqual(parse_signals({"success": True, "data": "x"}), [])
        self.assertEqual(parse_signals(None), [])


class SignalSelectionTests(unittest.TestCase):
    SUPPORTED = {"BONK", "JUP", "RAY", "PENGU"}

    def _supported(self, symbol: str) -> bool:
        return symbol in self.SUPPORTED

    def test_score_weights_urgency_confidence_and_buy_bonus(self) -> None:
        self.assertAlmostEqual(score_signal(TradeSignal("BONK", "BUY", 0.6, 0.8)), 0.71)
        self.assertAlmostEqual(score_signal(TradeSignal("BONK", "SELL", 0.6, 0.8)), 0.70)

    def test_neutral_and_unsupported_are_skipped(self) -> None:
        signals = [
            TradeSignal("JUP", "NEUTRAL", 1.0, 1.0),
            TradeSignal("DOGE", "BUY", 1.0, 1.0),
            TradeSignal("RAY", "SELL", 0.4, 0.4),
        ]
        chosen = select_entry_signal(signals, self._supported)
        self.assertEqual(chosen.token, "RAY")

    def test_highest_score_wins_and_ties_keep_first(self) -> None:
        signals = [
            TradeSignal("BONK", "BUY", 0.5, 0.5),
            TradeSignal("PENGU", "BUY", 0.5, 0.5),
            TradeSignal("RAY", "SELL", 0.5, 0.5),
        ]
        self.assertEqual(select_entry_signal(signals, self._supported).token, "BONK")
        signals.append(TradeSignal("JUP", "BUY", 0.9, 0.5))
        self.assertEqual(select_entry_signal(signals, self._supported).token, "JUP")

    def test_base_asset_never_wins_even_when_supported(self) -> None:
        signals = [
            TradeSignal("SOL", "BUY", 0.9, 0.9),
            TradeSignal("BONK", "BUY", 0.8, 0.8),
        ]
        chosen = select_entry_signal(signals, lambda symbol: symbol in self.SUPPORTED | {"SOL"})
        self.assertEqual(chosen.token, "BONK")

    def test_empty_input_returns_none(self) -> None:
        self.assertIsNone(select_entry_signal([], self._supported))


class SignalFeedTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    async def test_refresh_then_fetch(self) -> None:
        self.patch_cfg(SIGNALS_REFRESH_ENABLED=True)
        http = FakeHttp(HttpResult(True, 200, {"ok": True}), HttpResult(True, 200, SIGNALS_BODY))
        feed = SignalFeed(http=http, base_url="http://signals.local/")

        signals = await feed.latest_signals()

        self.assertEqual(http.posts, ["http://signals.local/refresh"])
        self.assertEqual(http.gets, ["http://signals.local/signals"])
        self.assertEqual(len(signals), 3)

    async def test_refresh_can_be_disabled(self) -> None:
        self.patch_cfg(SIGNALS_REFRESH_ENABLED=False)
        http = FakeHttp(HttpResult(False, 500, None), HttpResult(True, 200, SIGNALS_BODY))
        feed = SignalFeed(http=http, base_url="http://signals.local")

        await feed.latest_signals()
        self.assertEqual(http.posts, [])

    async def test_failures_raise(self) -> None:
        self.patch_cfg(SIGNALS_REFRESH_ENABLED=True)
        feed = SignalFeed(
            http=FakeHttp(HttpResult(False, 503, None, "HTTP 503"), HttpResult(True, 200, SIGNALS_BODY)),
            base_url="http://signals.local",
        )
        with self.assertRaises(SignalFeedError):
            await feed.latest_signals()

        feed = SignalFeed(
            http=FakeHttp(HttpResult(True, 200, {}), HttpResult(False, 0, None, "timeout")),
            base_url="http://signals.local",
        )
        with self.assertRaises(SignalFeedError):
            await feed.latest_signals()


if __name__ == "__main__":
    unittest.main()
