"""Tests for the periodic turn expiry sweeper."""

import asyncio
from unittest.mock import MagicMock

import pytest

from src.workers.expiry import ExpirySweeper


class TestExpirySweeper:
    def test_run_once_expires_stale_turns(self, lifecycle, group, clock):
        lifecycle.start_turn(group.id, "alice")
        clock.advance(hours=25)

        sweeper = ExpirySweeper(lifecycle)
        assert sweeper.run_once() == 1
        assert sweeper.run_once() == 0

    def test_interval_must_be_positive(self, lifecycle):
        with pytest.raises(ValueError):
            ExpirySweeper(lifecycle, interval_seconds=0)

    @pytest.mark.asyncio
    async def test_run_until_stopped(self):
        manager = MagicMock()
        manager.expire_old_turns.return_value = 0
        sweeper = ExpirySweeper(manager, interval_seconds=3600)

        task = asyncio.create_task(sweeper.run())
        for _ in range(100):
            if manager.expire_old_turns.called:
                break
            await asyncio.sleep(0.01)
        assert sweeper.running

        sweeper.stop()
        await asyncio.wait_for(task, timeout=5)
        assert not sweeper.running
        assert manager.expire_old_turns.call_count == 1

    @pytest.mark.asyncio
    async def test_failed_sweep_does_not_stop_loop(self):
        manager = MagicMock()
        manager.expire_old_turns.side_effect = RuntimeError("database down")
        sweeper = ExpirySweeper(manager, interval_seconds=3600)

        task = asyncio.create_task(sweeper.run())
        for _ in range(100):
            if manager.expire_old_turns.called:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.01)
        assert sweeper.running

        sweeper.stop()
        await asyncio.wait_for(task, timeout=5)
