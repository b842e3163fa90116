"""Web server of the controller: static files plus a JSON websocket channel."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from aiohttp import WSMsgType, web

_log = logging.getLogger(__name__)

PROTOCOL_NAME = "everest-controller"
DEFAULT_DOCUMENT = "index.html"
_EXTRA_MIME_TYPES = {".mp4": "application/x-mp4"}

IncomingMessageHandler = Callable[[str], Any]


class OutputState(Enum):
    EMPTY = "empty"
    LAST_DATA = "last_data"
    MORE_DATA = "more_data"


@dataclass(frozen=True)
class Output:
    """One piece of outgoing data and whether more is queued behind it."""

    state: OutputState = OutputState.EMPTY
    data: str = ""


class WebsocketSession:
    """Input assembly and a thread-safe output queue for one websocket client."""

    def __init__(self, on_output: Optional[Callable[[], None]] = None) -> None:
        self._input: list[str] = []
        self._output_queue: deque[str] = deque()
        self._output_lock = threading.Lock()
        self._on_output = on_output

    def push_output_data(self, data: str) -> None:
        with self._output_lock:
            self._output_queue.append(data)
        if self._on_output is not None:
            self._on_output()

    def pop_output(self) -> Output:
        with self._output_lock:
            if not self._output_queue:
                return Output()
            data = self._output_queue.popleft()
            state = OutputState.MORE_DATA if self._output_queue else OutputState.LAST_DATA
        return Output(state, data)

    def add_input(self, data: str) -> None:
        self._input.append(data)

    def finish_input(self) -> str:
        data = "".join(self._input)
        self._input.clear()
        return data


class Server:
    """Serves files from a directory and answers websocket messages through a handler."""

    def __init__(self, host: Optional[str] = None) -> None:
        self.host = host
        self.port: Optional[int] = None
        self.started = threading.Event()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._sessions: set[WebsocketSession] = set()
        self._handler: Optional[IncomingMessageHandler] = None

    def run(self, handler: Optional[IncomingMessageHandler], html_origin: str, port: int) -> None:
        """Serve until stop() is called; blocks the calling thread."""
        if handler is None or not callable(handler):
            raise RuntimeError("Could not run the server with a null incoming message handler")
        self._handler = handler
        asyncio.run(self._serve(Path(html_origin).resolve(), port))

    def stop(self) -> None:
        """Ask a running server to shut down."""
        with self._lock:
            if self._loop is not None and self._stop_event is not None:
                self._loop.call_soon_threadsafe(self._stop_event.set)

    def push(self, msg: Any) -> None:
        """Send a JSON message to every connected websocket client."""
        with self._lock:
            if self._loop is None:
                return
            text = json.dumps(msg)
            for session in self._sessions:
                session.push_output_data(text)

    async def _serve(self, root: Path, port: int) -> None:
        app = web.Application()

        async def handle(request: web.Request) -> web.StreamResponse:
            return await self._handle_get(request, root)

        app.router.add_get("/{tail:.*}", handle)
        runner = web.AppRunner(app)
        await runner.setup()
        try:
            site = web.TCPSite(runner, host=self.host, port=port)
            await site.start()
            self.port = runner.addresses[0][1]
            _log.info("Launching controller service on port %s", self.port)

            stop_event = asyncio.Event()
            with self._lock:
                self._loop = asyncio.get_running_loop()
                self._stop_event = stop_event
            self.started.set()
            await stop_event.wait()
        finally:
            with self._lock:
                self._loop = None
                self._stop_event = None
            self.started.clear()
            await runner.cleanup()

    async def _handle_get(self, request: web.Request, root: Path) -> web.StreamResponse:
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return await self._handle_websocket(request)
        return self._serve_file(root, request.match_info.get("tail", ""))

    @staticmethod
    def _serve_file(root: Path, tail: str) -> web.StreamResponse:
        target = (root / tail).resolve()
        if target != root and root not in target.parents:
            raise web.HTTPNotFound()
        if target.is_dir():
            target = target / DEFAULT_DOCUMENT
        if not target.is_file():
            raise web.HTTPNotFound()
        mime = _EXTRA_MIME_TYPES.get(target.suffix)
        if mime is not None:
            return web.Response(body=target.read_bytes(), content_type=mime)
        return web.FileResponse(target)

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(protocols=(PROTOCOL_NAME,))
        await ws.prepare(request)

        loop = asyncio.get_running_loop()
        wake = asyncio.Event()

        def notify() -> None:
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(wake.set)

        session = WebsocketSession(on_output=notify)
        with self._lock:
            self._sessions.add(session)
        writer = asyncio.create_task(self._write_outputs(ws, session, wake))
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    session.add_input(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    session.add_input(msg.data.decode("utf-8", errors="replace"))
                else:
                    continue
                text = session.finish_input()
                reply = await loop.run_in_executor(None, self._handler, text)
                if reply is not None:
                    session.push_output_data(json.dumps(reply))
        finally:
            with self._lock:
                self._sessions.discard(session)
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
        return ws

    @staticmethod
    async def _write_outputs(ws: web.WebSocketResponse, session: WebsocketSession, wake: asyncio.Event) -> None:
        while True:
            await wake.wait()
            wake.clear()
            while True:
                output = session.pop_output()
                if output.state is OutputState.EMPTY:
                    break
                try:
                    await ws.send_str(output.data)
                except ConnectionResetError:
                    return