"""A client that hangs up mid-request stops the pipeline on a real server."""

import asyncio
import json
import os
import socket

import pytest
import uvicorn

from video_optimization.core.rate_limiter import RateLimiterRegistry
from video_optimization.main import create_app

AUTH_HEADER = b"Authorization: API-Key right\r\n"


class StallingToolRunner:
    """Tool runner whose every invocation hangs until it is cancelled."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def run(self, command, args, timeout=None, merge_stderr=True):
        self.started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        raise AssertionError("tool was expected to be cancelled")


async def wait_until(predicate, timeout: float = 5.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.05)
    return predicate()


@pytest.fixture
def listening_socket():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


class TestClientDisconnect:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/optimize", "/thumbnail"])
    async def test_dropped_connection_cancels_tool_and_cleans_up(
        self,
        path,
        settings,
        fake_store_factory,
        service_factory,
        work_dir,
        listening_socket,
    ) -> None:
        runner = StallingToolRunner()
        store = fake_store_factory({"clip.mp4": b"source"})
        app = create_app(
            settings=settings,
            store=store,
            transcoding_service=service_factory(store, runner, work_dir),
            rate_limiter=RateLimiterRegistry(rate=1.0, burst=1000),
        )
        server = uvicorn.Server(uvicorn.Config(app, lifespan="off", log_config=None))
        serve_task = asyncio.create_task(server.serve(sockets=[listening_socket]))

        try:
            assert await wait_until(lambda: server.started)
            host, port = listening_socket.getsockname()

            body = json.dumps({"filename": "clip.mp4"}).encode()
            reader, writer = await asyncio.open_connection(host, port)
            writer.write(
                f"POST {path} HTTP/1.1\r\n".encode()
                + f"Host: {host}:{port}\r\n".encode()
                + AUTH_HEADER
                + b"Content-Type: application/json\r\n"
                + f"Content-Length: {len(body)}\r\n\r\n".encode()
                + body
            )
            await writer.drain()

            await asyncio.wait_for(runner.started.wait(), timeout=5)
            assert os.listdir(work_dir) != []

            writer.close()
            await writer.wait_closed()

            await asyncio.wait_for(runner.cancelled.wait(), timeout=5)
            assert await wait_until(lambda: os.listdir(work_dir) == [])
            assert store.objects.keys() == {"clip.mp4"}
        finally:
            server.should_exit = True
            await asyncio.wait_for(serve_task, timeout=10)
