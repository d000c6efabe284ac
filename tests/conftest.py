# tests/conftest.py
import asyncio

import pytest

from components.network.address import ListenSpec, TargetSpec
from components.network.settings import RelaySettings
from components.network.tcp_proxy import TCPProxy


class EchoServer:
    """Target endpoint that echoes every byte and closes after the client's EOF."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0):
        self.host = host
        self.port = port
        self.server: asyncio.AbstractServer | None = None
        self.connections = 0

    async def start(self):
        self.server = await asyncio.start_server(self._handle, self.host, self.port)
        self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self):
        if self.server:
            self.server.close()
            await self.server.wait_closed()

    async def _handle(self, reader, writer):
        self.connections += 1
        try:
            while data := await reader.read(65536):
                writer.write(data)
                await writer.drain()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass


@pytest.fixture
async def echo_server():
    server = EchoServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def relay_settings():
    return RelaySettings(connect_timeout=2.0, shutdown_grace=1.0)


@pytest.fixture
async def relay(echo_server, unused_tcp_port, relay_settings):
    """Relay on 127.0.0.1:<free port> forwarding to the echo server."""
    proxy = TCPProxy(
        listen=ListenSpec(host="127.0.0.1", port=unused_tcp_port),
        target=TargetSpec(host="127.0.0.1", port=echo_server.port),
        settings=relay_settings,
    )
    await proxy.start()
    serve_task = asyncio.create_task(proxy.serve_forever())
    yield proxy
    await proxy.stop()
    await serve_task


@pytest.fixture
async def make_echo_server():
    """Factory for echo servers on a chosen port, started by the test."""
    servers: list[EchoServer] = []

    def factory(port: int = 0) -> EchoServer:
        server = EchoServer(port=port)
        servers.append(server)
        return server

    yield factory

    for server in servers:
        await server.stop()
