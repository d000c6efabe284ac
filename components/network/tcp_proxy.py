"""
Async TCP proxy with no protocol awareness.

Owns:
- the listening socket and its accept loop
- one session task per accepted connection
- half-close propagation between the two directions of a session
"""

import asyncio
import contextlib
import errno
import itertools
import logging
import os
import socket
from datetime import datetime

from components.logs.logger import LOGGER_NAME, SessionLogger
from components.network.address import ListenSpec, TargetSpec, format_address
from components.network.exceptions import (
    BindFailure,
    ConnectFailure,
    CopyError,
    ListenerFailure,
)
from components.network.session import Direction, Session
from components.network.settings import RelaySettings

# Accept errors that leave the listening socket usable
TRANSIENT_ACCEPT_ERRNOS = frozenset(
    {
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
        errno.ECONNABORTED,
        errno.EPROTO,
        errno.EPERM,
        errno.EINTR,
    }
)

# Transient errors that need a pause before accepting again
RESOURCE_LIMIT_ERRNOS = frozenset(
    {errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM}
)


class TCPProxy:
    def __init__(
        self,
        *,
        listen: ListenSpec,
        target: TargetSpec,
        settings: RelaySettings | None = None,
        logger: logging.Logger | None = None,
    ):
        self.listen = listen
        self.target = target
        self.settings = settings or RelaySettings()
        self.logger = logger or logging.getLogger(LOGGER_NAME)

        self.server_socket: socket.socket | None = None

        self._ids = itertools.count(1)
        self._sessions: set[asyncio.Task] = set()
        self._accept_task: asyncio.Task | None = None
        self._closing = False

    @property
    def address(self) -> tuple[str, int] | None:
        if self.server_socket is None:
            return None
        return self.server_socket.getsockname()[:2]

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------

    async def start(self):
        """Bind and listen. Bind failures are fatal and never retried."""
        loop = asyncio.get_running_loop()

        try:
            infos = await loop.getaddrinfo(
                self.listen.host,
                self.listen.port,
                type=socket.SOCK_STREAM,
                flags=socket.AI_PASSIVE,
            )
        except socket.gaierror as exc:
            raise BindFailure(f"failed to resolve {self.listen}: {exc}") from exc

        last_exc: OSError | None = None
        for family, type_, proto, _, sockaddr in infos:
            sock = socket.socket(family, type_, proto)
            try:
                if os.name == "posix":
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(sockaddr)
                sock.listen(self.settings.backlog)
                sock.setblocking(False)
            except OSError as exc:
                sock.close()
                last_exc = exc
                continue

            self.server_socket = sock
            break
        else:
            raise BindFailure(
                f"failed to bind to {self.listen}: {last_exc or 'no usable address'}"
            ) from last_exc

        self._closing = False
        self.logger.info(
            "continuously recv listening on %s", format_address(*self.address)
        )

    async def serve_forever(self):
        """Accept until stopped. Raises ListenerFailure if accept breaks."""
        if self._closing:
            return
        if self.server_socket is None:
            await self.start()

        self._accept_task = asyncio.create_task(self._accept_loop())
        try:
            await self._accept_task
        except asyncio.CancelledError:
            if not self._closing:
                raise
        finally:
            self._accept_task = None

    async def stop(self):
        """Stop accepting, let sessions drain, then cancel stragglers."""
        self._closing = True

        if self._accept_task:
            self._accept_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._accept_task

        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None

        if not self._sessions:
            return

        _, pending = await asyncio.wait(
            set(self._sessions), timeout=self.settings.shutdown_grace
        )
        if pending:
            self.logger.warning("closing %d unfinished session(s)", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------

    async def _accept_loop(self):
        loop = asyncio.get_running_loop()

        while True:
            try:
                conn, addr = await loop.sock_accept(self.server_socket)
            except OSError as exc:
                if exc.errno not in TRANSIENT_ACCEPT_ERRNOS:
                    raise ListenerFailure(
                        f"accept on {self.listen} failed: {exc}"
                    ) from exc

                self.logger.warning("accept error (continuing): %s", exc)
                if exc.errno in RESOURCE_LIMIT_ERRNOS:
                    await asyncio.sleep(self.settings.accept_backoff)
                continue

            session_id = next(self._ids)
            task = asyncio.create_task(self._handle(session_id, conn, addr))
            self._sessions.add(task)
            task.add_done_callback(self._sessions.discard)

    async def _handle(self, session_id: int, conn: socket.socket, addr):
        log = SessionLogger(self.logger, session_id)
        client = format_address(*addr[:2])
        log.info("+ new connection from %s", client)

        try:
            client_reader, client_writer = await asyncio.open_connection(sock=conn)
        except OSError as exc:
            conn.close()
            log.error("error handling connection from %s: %s", client, exc)
            return

        try:
            target_reader, target_writer = await self._connect(session_id, log)
        except ConnectFailure as exc:
            log.error("error handling connection from %s: %s", client, exc)
            client_writer.close()
            with contextlib.suppress(OSError):
                await client_writer.wait_closed()
            return
        except asyncio.CancelledError:
            client_writer.close()
            raise

        peer = target_writer.get_extra_info("peername")
        session = Session(
            session_id=session_id,
            client=client,
            target=format_address(*peer[:2]) if peer else str(self.target),
            client_reader=client_reader,
            client_writer=client_writer,
            target_reader=target_reader,
            target_writer=target_writer,
        )
        log.info("%s >>> %s", session.client, session.target)

        try:
            await asyncio.gather(
                self._pipe(session, Direction.INBOUND, log),
                self._pipe(session, Direction.OUTBOUND, log),
            )
        finally:
            if not session.complete:
                log.warning("closing %s before both directions finished", client)
            await session.close()

        errors = "; ".join(
            f"{direction.value}: {error.message}"
            for direction, error in session.errors.items()
        )
        log.info(
            "- connection from %s closed after %.2fs (%d bytes >>>, %d bytes <<<)%s",
            client,
            (datetime.now() - session.started_at).total_seconds(),
            session.bytes_copied[Direction.INBOUND],
            session.bytes_copied[Direction.OUTBOUND],
            f" [{errors}]" if errors else "",
        )

    async def _connect(self, session_id: int, log: SessionLogger):
        attempts = self.settings.connect_attempts
        last_exc: BaseException | None = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    asyncio.open_connection(self.target.host, self.target.port),
                    timeout=self.settings.connect_timeout,
                )
            except (OSError, asyncio.TimeoutError) as exc:
                last_exc = exc

            if attempt < attempts:
                delay = self.settings.connect_backoff * 2 ** (attempt - 1)
                log.warning(
                    "connect attempt %d/%d to %s failed: %s; retrying in %.2fs",
                    attempt,
                    attempts,
                    self.target,
                    self._describe(last_exc),
                    delay,
                )
                await asyncio.sleep(delay)

        raise ConnectFailure(
            f"failed to connect to target {self.target}: {self._describe(last_exc)}",
            session_id,
        ) from last_exc

    async def _pipe(self, session: Session, direction: Direction, log: SessionLogger):
        reader, writer = session.streams(direction)
        arrow = ">>>" if direction is Direction.INBOUND else "<<<"
        error = None

        try:
            while data := await self._read(reader):
                writer.write(data)
                await writer.drain()
                session.record(direction, len(data))
                log.debug(
                    "%s %s %s - %d bytes",
                    session.client,
                    arrow,
                    session.target,
                    len(data),
                )
        except (OSError, asyncio.TimeoutError) as exc:
            error = CopyError(
                f"error in {direction.value} transfer: {self._describe(exc)}",
                session.session_id,
                direction,
            )
            error.__cause__ = exc
            log.warning("%s", error)

        # an errored direction ends like end-of-stream
        session.finish(direction, error)
        self._shutdown_write(writer, log)

    async def _read(self, reader: asyncio.StreamReader) -> bytes:
        if self.settings.idle_timeout is None:
            return await reader.read(self.settings.buffer_size)
        return await asyncio.wait_for(
            reader.read(self.settings.buffer_size), self.settings.idle_timeout
        )

    @staticmethod
    def _shutdown_write(writer: asyncio.StreamWriter, log: SessionLogger):
        if writer.is_closing() or not writer.can_write_eof():
            return
        try:
            writer.write_eof()
        except OSError as exc:
            log.debug("write shutdown failed: %s", exc)

    @staticmethod
    def _describe(exc: BaseException | None) -> str:
        if isinstance(exc, asyncio.TimeoutError) and not str(exc):
            return "timed out"
        return str(exc) or type(exc).__name__


# ======================================================================


async def run(
    listen: ListenSpec,
    target: TargetSpec,
    settings: RelaySettings | None = None,
    logger: logging.Logger | None = None,
):
    """Bind ``listen`` and forward every connection to ``target`` until cancelled."""
    proxy = TCPProxy(listen=listen, target=target, settings=settings, logger=logger)
    await proxy.start()
    proxy.logger.info("forward: %s -> %s", listen, target)

    try:
        await proxy.serve_forever()
    finally:
        await proxy.stop()
