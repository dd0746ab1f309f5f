"""WebSocket transport for the charge point session.

The session only sees four events (``on_open``, ``on_text``, ``on_close``,
``on_error``) and two commands (``send``, ``close``). Sending never waits for
the network: frames are queued and a writer task pushes them out once the
socket is open.
"""
import asyncio
import logging
from typing import Optional, Protocol

import websockets


class TransportListener(Protocol):
    def on_open(self) -> None: ...

    def on_text(self, frame: str) -> None: ...

    def on_close(self) -> None: ...

    def on_error(self, detail: str) -> None: ...


class WebSocketTransport:
    def __init__(self, listener: TransportListener, open_timeout: float = 10):
        self._listener = listener
        self._open_timeout = open_timeout
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    def connect(self, url: str, subprotocol: str) -> None:
        self._task = asyncio.create_task(self._run(url, subprotocol))

    def send(self, text: str) -> None:
        self._outbox.put_nowait(text)

    def close(self) -> None:
        self._closing = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self, url: str, subprotocol: str):
        try:
            async with websockets.connect(
                url, subprotocols=[subprotocol], open_timeout=self._open_timeout
            ) as ws:
                if ws.subprotocol != subprotocol:
                    logging.warning(f"CSMS negotiated subprotocol {ws.subprotocol!r}, wanted {subprotocol!r}")
                self._ws = ws
                writer = asyncio.create_task(self._drain(ws))
                self._listener.on_open()
                try:
                    async for message in ws:
                        if isinstance(message, bytes):
                            message = message.decode("utf-8", errors="replace")
                        self._listener.on_text(message)
                finally:
                    writer.cancel()
                    self._ws = None
        except asyncio.CancelledError:
            raise
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
            if not self._closing:
                self._listener.on_error(f"{type(exc).__name__}: {exc}")
            return
        except Exception as exc:
            logging.exception("WebSocket reader stopped")
            if not self._closing:
                self._listener.on_error(f"{type(exc).__name__}: {exc}")
            return
        if not self._closing:
            self._listener.on_close()

    async def _drain(self, ws):
        while True:
            text = await self._outbox.get()
            try:
                await ws.send(text)
            except websockets.ConnectionClosed:
                # the reader loop reports the close
                return
