from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

import config
from trading.exit_controller import ExitRetryController
from trading.models import POSITION_CLOSED, POSITION_OPEN, ExecutionResult, EXEC_OK, Position


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


class ScriptedExecutor:
    """Replays one result per exit attempt and records the tolerance used."""

    def __init__(self, results: list[ExecutionResult]) -> None:
        self.results = list(results)
        self.tolerances: list[int] = []

    async def execute_exit(self, position: Position, reason: str, tolerance_bps: int) -> ExecutionResult:
        self.tolerances.append(tolerance_bps)
        result = self.results.pop(0)
        if result.ok and not result.tolerance_bps:
            result.tolerance_bps = tolerance_bps
        return result


class RaisingExecutor:
    async def execute_exit(self, position: Position, reason: str, tolerance_bps: int) -> ExecutionResult:
        raise RuntimeError("boom")


class RecordingJournal:
    def __init__(self) -> None:
        self.rows: list[dict] = []

    def trade(self, event: dict) -> dict:
        self.rows.append(event)
        return event


def _position() -> Position:
    return Position(
        token="JUP",
        side="BUY",
        entry_price=1.0,
        quantity=10.0,
        sol_spent=0.9,
        take_profit_price=1.03,
        stop_loss_price=0.95,
        auto_exit_at=datetime.now(timezone.utc) + timedelta(seconds=180),
        session_id="sess_exit",
    )


def _ok(ref: str = "sig-ok") -> ExecutionResult:
    return ExecutionResult(status=EXEC_OK, message="exit_filled", settlement_ref=ref)


class ExitRetryControllerTests(ConfigPatchMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.patch_cfg(
            EXIT_MIN_TOLERANCE_BPS=300,
            EXIT_TOLERANCE_LADDER_BPS=[300, 500, 700, 1000, 1500, 2000],
            EXIT_RETRY_DELAY_SECONDS=3.0,
        )
        self.sleeps: list[float] = []

    async def _no_sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    async def test_rungs_are_tried_in_order_and_stop_at_first_success(self) -> None:
        executor = ScriptedExecutor([ExecutionResult.failed("Code 1"), ExecutionResult.failed("Code 1"), _ok()])
        journal = RecordingJournal()
        controller = ExitRetryController(executor, journal, sleep=self._no_sleep)
        position = _position()

        report = await controller.exit_position(position, "stop-loss")

        self.assertTrue(report.closed)
        self.assertEqual(executor.tolerances, [300, 500, 700])
        self.assertEqual(report.tolerance_bps, 700)
        self.assertEqual(self.sleeps, [3.0, 3.0])
        self.assertEqual(position.status, POSITION_CLOSED)
        self.assertEqual(position.exit_reason, "stop-loss")
        self.assertEqual(position.exit_tolerance_bps, 700)
        self.assertEqual(position.exit_ref, "sig-ok")
        self.assertEqual([r["reason"] for r in journal.rows], ["exit_failed", "exit_failed", "stop_loss"])

    async def test_exhausted_ladder_leaves_position_open_and_flagged(self) -> None:
        rungs = ExitRetryController.ladder()
        executor = ScriptedExecutor([ExecutionResult.failed("Code 1") for _ in rungs])
        controller = ExitRetryController(executor, sleep=self._no_sleep)
        position = _position()

        report = await controller.exit_position(position, "timeout")

        self.assertFalse(report.closed)
        self.assertTrue(report.exhausted)
        self.assertEqual(executor.tolerances, [300, 500, 700, 1000, 1500, 2000])
        self.assertEqual(len(self.sleeps), len(rungs) - 1)
        self.assertEqual(position.status, POSITION_OPEN)
        self.assertTrue(position.needs_attention)
        self.assertFalse(controller.is_exiting(position.id))

    async def test_ladder_below_floor_is_lifted(self) -> None:
        self.patch_cfg(EXIT_TOLERANCE_LADDER_BPS=[50, 100, 800])
        executor = ScriptedExecutor([ExecutionResult.failed("x"), _ok()])
        controller = ExitRetryController(executor, sleep=self._no_sleep)

        report = await controller.exit_position(_position(), "take-profit")

        self.assertTrue(report.closed)
        self.assertEqual(executor.tolerances, [300, 800])

    async def test_busy_executor_defers_without_closing(self) -> None:
        executor = ScriptedExecutor([ExecutionResult.busy_result()])
        controller = ExitRetryController(executor, sleep=self._no_sleep)
        position = _position()

        report = await controller.exit_position(position, "take-profit")

        self.assertTrue(report.busy)
        self.assertFalse(report.closed)
        self.assertEqual(position.status, POSITION_OPEN)
        self.assertFalse(position.needs_attention)
        self.assertEqual(self.sleeps, [])

    async def test_closed_position_is_not_exited_again(self) -> None:
        executor = ScriptedExecutor([])
        controller = ExitRetryController(executor, sleep=self._no_sleep)
        position = _position()
        position.close("take-profit", exit_ref="first")

        report = await controller.exit_position(position, "timeout")

        self.assertEqual(report.error, "position_not_open")
        self.assertEqual(executor.tolerances, [])
        self.assertEqual(position.exit_reason, "take-profit")

    async def test_unknown_reason_is_rejected_before_any_order(self) -> None:
        executor = ScriptedExecutor([_ok()])
        controller = ExitRetryController(executor, sleep=self._no_sleep)
        position = _position()

        report = await controller.exit_position(position, "manual")

        self.assertFalse(report.closed)
        self.assertEqual(report.error, "unknown_exit_reason:manual")
        self.assertEqual(executor.tolerances, [])
        self.assertTrue(position.is_open)

    async def test_unexpected_error_is_contained(self) -> None:
        controller = ExitRetryController(RaisingExecutor(), sleep=self._no_sleep)
        position = _position()

        report = await controller.exit_position(position, "timeout")

        self.assertFalse(report.closed)
        self.assertTrue(report.error.startswith("unexpected_error"))
        self.assertTrue(position.is_open)
        self.assertFalse(controller.is_exiting(position.id))


if __name__ == "__main__":
    unittest.main()
