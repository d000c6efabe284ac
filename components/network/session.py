# components/network/session.py
"""
One forwarded connection pair.

Each direction moves independently from COPYING to a terminal state
(HALF_CLOSED on end-of-stream, ERROR on an I/O failure). The sockets are
closed once, after both directions are terminal.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from components.network.exceptions import CopyError


class Direction(Enum):
    INBOUND = "client->target"
    OUTBOUND = "target->client"


class PipeState(Enum):
    COPYING = "copying"
    HALF_CLOSED = "half_closed"
    ERROR = "error"


@dataclass
class Session:
    """State of one accepted client and its outbound target connection."""

    session_id: int
    client: str
    target: str
    client_reader: asyncio.StreamReader
    client_writer: asyncio.StreamWriter
    target_reader: asyncio.StreamReader
    target_writer: asyncio.StreamWriter
    started_at: datetime = field(default_factory=datetime.now)
    states: dict[Direction, PipeState] = field(
        default_factory=lambda: {d: PipeState.COPYING for d in Direction}
    )
    bytes_copied: dict[Direction, int] = field(
        default_factory=lambda: {d: 0 for d in Direction}
    )
    errors: dict[Direction, CopyError] = field(default_factory=dict)
    closed: bool = False

    # ----------------------------------------------------------------

    def streams(
        self, direction: Direction
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Source reader and destination writer for a direction."""
        if direction is Direction.INBOUND:
            return self.client_reader, self.target_writer
        return self.target_reader, self.client_writer

    def record(self, direction: Direction, nbytes: int):
        self.bytes_copied[direction] += nbytes

    def finish(self, direction: Direction, error: CopyError | None = None):
        if self.states[direction] is not PipeState.COPYING:
            return
        if error is not None:
            self.errors[direction] = error
            self.states[direction] = PipeState.ERROR
        else:
            self.states[direction] = PipeState.HALF_CLOSED

    @property
    def complete(self) -> bool:
        return all(state is not PipeState.COPYING for state in self.states.values())

    # ----------------------------------------------------------------

    async def close(self):
        if self.closed:
            return
        self.closed = True

        for writer in (self.client_writer, self.target_writer):
            writer.close()
        for writer in (self.client_writer, self.target_writer):
            # peer may already have reset the connection
            with contextlib.suppress(OSError):
                await writer.wait_closed()
