"""
Tests for the watched value and the change-driven effect runner.
"""

import asyncio
import logging
import pytest

from linkdevices.common.watch import Effect, Watched


class TestWatched:
    """Test change notification."""

    def test_notifies_on_change_only(self):
        """Setting the same value again is silent."""
        seen = []
        w = Watched(1)
        w.subscribe(seen.append)
        w.set(1)
        w.set(2)
        w.set(2)
        w.set(None)
        assert seen == [2, None]
        assert w.value is None

    def test_unsubscribe(self):
        """Unsubscribed callbacks stop receiving values."""
        seen = []
        w = Watched()
        unsubscribe = w.subscribe(seen.append)
        w.set(1)
        unsubscribe()
        unsubscribe()
        w.set(2)
        assert seen == [1]


class TestEffect:
    """Test scheduling, generations and teardown."""

    def test_runs_once_per_distinct_value(self):
        """Repeated values do not schedule new runs."""
        runs = []

        async def run(value, token):
            runs.append((value, token.generation))

        async def scenario():
            effect = Effect(run)
            first = effect.trigger(None)
            assert effect.trigger(None) is None
            await first
            await effect.trigger(5)
            assert effect.trigger(5) is None
            return effect.generation

        assert asyncio.run(scenario()) == 2
        assert runs == [(None, 1), (5, 2)]

    def test_newer_trigger_makes_token_stale(self):
        """Only the latest run's token is current."""
        tokens = []
        gate = None

        async def run(value, token):
            tokens.append(token)
            await gate.wait()
            return token.stale

        async def scenario():
            nonlocal gate
            gate = asyncio.Event()
            effect = Effect(run)
            first = effect.trigger(1)
            second = effect.trigger(2)
            gate.set()
            return await first, await second

        assert asyncio.run(scenario()) == (True, False)

    def test_bind_runs_for_current_value_and_changes(self):
        """bind triggers immediately, then on every change."""
        runs = []

        async def run(value, token):
            runs.append(value)

        async def scenario():
            w = Watched(3)
            effect = Effect(run)
            await effect.bind(w)
            w.set(4)
            await asyncio.sleep(0)
            await effect.close()
            w.set(5)

        asyncio.run(scenario())
        assert runs == [3, 4]

    def test_close_cancels_and_rejects_triggers(self):
        """Closed effects cancel in-flight runs and refuse new ones."""
        async def run(value, token):
            await asyncio.sleep(10)

        async def scenario():
            effect = Effect(run)
            task = effect.trigger(1)
            await asyncio.sleep(0)
            await effect.close()
            assert task.cancelled()
            assert effect.in_flight == 0
            with pytest.raises(RuntimeError):
                effect.trigger(2)

        asyncio.run(scenario())

    def test_failed_run_is_logged(self, caplog):
        """Runs nobody awaits still report their exception."""
        async def run(value, token):
            raise ValueError(f"bad {value}")

        async def scenario():
            effect = Effect(run)
            effect.trigger(1)
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert effect.in_flight == 0

        with caplog.at_level(logging.ERROR, logger="linkdevices.common.watch"):
            asyncio.run(scenario())
        assert "watch-run-1 failed" in caplog.text
        assert "bad 1" in caplog.text

    def test_cancelled_run_is_not_logged(self, caplog):
        """Teardown cancellation is not an error."""
        async def run(value, token):
            await asyncio.sleep(10)

        async def scenario():
            effect = Effect(run)
            effect.trigger(1)
            await asyncio.sleep(0)
            await effect.close()

        with caplog.at_level(logging.ERROR, logger="linkdevices.common.watch"):
            asyncio.run(scenario())
        assert "[watch]" not in caplog.text
