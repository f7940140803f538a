"""
test_round_detector.py - Unit tests for RoundTransitionDetector.
"""

import asyncio

import pytest

from orbminer.chain_simulator import ChainSimulator
from orbminer.round_detector import RoundTransitionDetector


class TestObserve:

    def test_fires_once_per_distinct_round(self):
        detector = RoundTransitionDetector()
        fired = [r for r in [5, 5, 5, 6, 6, 7] if detector.observe(r)]
        assert fired == [5, 6, 7]
        assert detector.last_round_id == 7

    def test_first_read_fires(self):
        detector = RoundTransitionDetector()
        assert detector.last_round_id is None
        assert detector.observe(1)

    def test_any_change_fires(self):
        detector = RoundTransitionDetector()
        detector.observe(9)
        assert detector.observe(8)
        assert detector.observe(9)

    def test_reset(self):
        detector = RoundTransitionDetector()
        detector.observe(3)
        detector.reset()
        assert detector.observe(3)

    def test_rollback_refires_round(self):
        detector = RoundTransitionDetector()
        assert detector.observe(5)
        assert detector.observe(6)
        detector.rollback(5)
        assert detector.last_round_id == 5
        assert detector.observe(6)
        assert not detector.observe(6)


@pytest.mark.asyncio
class TestPoll:

    async def test_poll_reads_board(self):
        chain = ChainSimulator(round_id=5)
        detector = RoundTransitionDetector()

        board, is_new = await detector.poll(chain)
        assert board.round_id == 5 and is_new
        _, is_new = await detector.poll(chain)
        assert not is_new

        chain.advance_round()
        board, is_new = await detector.poll(chain)
        assert board.round_id == 6 and is_new

    async def test_concurrent_polls_fire_once(self):
        chain = ChainSimulator(round_id=5)
        chain.delays["get_account_info"] = 0.01
        detector = RoundTransitionDetector()
        results = await asyncio.gather(*(detector.poll(chain) for _ in range(10)))
        assert sum(1 for _, is_new in results if is_new) == 1
