# tests/unit/network/test_session.py
"""
Unit tests for Session direction bookkeeping.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from components.network.exceptions import CopyError
from components.network.session import Direction, PipeState, Session


def _writer():
    writer = Mock()
    writer.close = Mock()
    writer.wait_closed = AsyncMock()
    return writer


@pytest.fixture
def session():
    return Session(
        session_id=7,
        client="127.0.0.1:50000",
        target="127.0.0.1:9000",
        client_reader=Mock(),
        client_writer=_writer(),
        target_reader=Mock(),
        target_writer=_writer(),
    )


class TestSessionState:
    """Test per-direction states."""

    def test_starts_copying_both_ways(self, session):
        assert session.states[Direction.INBOUND] is PipeState.COPYING
        assert session.states[Direction.OUTBOUND] is PipeState.COPYING
        assert session.complete is False

    def test_streams_pair_source_and_destination(self, session):
        assert session.streams(Direction.INBOUND) == (
            session.client_reader,
            session.target_writer,
        )
        assert session.streams(Direction.OUTBOUND) == (
            session.target_reader,
            session.client_writer,
        )

    def test_one_direction_half_closed_is_not_complete(self, session):
        """Test half-close of a single direction.

        WHY: The other direction must keep running after one side's EOF.
        """
        session.finish(Direction.INBOUND)

        assert session.states[Direction.INBOUND] is PipeState.HALF_CLOSED
        assert session.complete is False

    def test_complete_after_both_terminal(self, session):
        error = CopyError("reset", 7, Direction.OUTBOUND)

        session.finish(Direction.INBOUND)
        session.finish(Direction.OUTBOUND, error)

        assert session.states[Direction.OUTBOUND] is PipeState.ERROR
        assert session.errors == {Direction.OUTBOUND: error}
        assert session.complete is True

    def test_terminal_state_is_final(self, session):
        session.finish(Direction.INBOUND)
        session.finish(Direction.INBOUND, CopyError("late", 7))

        assert session.states[Direction.INBOUND] is PipeState.HALF_CLOSED
        assert session.errors == {}

    def test_record_counts_bytes(self, session):
        session.record(Direction.INBOUND, 10)
        session.record(Direction.INBOUND, 5)

        assert session.bytes_copied[Direction.INBOUND] == 15
        assert session.bytes_copied[Direction.OUTBOUND] == 0


class TestSessionClose:
    """Test socket closing."""

    @pytest.mark.asyncio
    async def test_close_closes_both_sockets_once(self, session):
        await session.close()
        await session.close()

        session.client_writer.close.assert_called_once()
        session.target_writer.close.assert_called_once()
        assert session.closed is True

    @pytest.mark.asyncio
    async def test_close_tolerates_reset_peer(self, session):
        session.client_writer.wait_closed.side_effect = ConnectionResetError()

        await session.close()

        session.target_writer.wait_closed.assert_awaited_once()
