"""Chat WebSocket endpoint: presence, messaging and call signalling.

Provides a single WebSocket endpoint at /ws. Clients connect with
``?user_id=...``, receive ``connected`` once registered, then exchange
``{"action": ...}`` frames with the realtime gateway.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.api.config import DEFAULT_WS_CONFIG
from src.errors.exceptions import ValidationError
from src.errors.validators import validate_user_id
from src.realtime.config import OutboundEventType
from src.realtime.events import OutboundEvent, Target
from src.realtime.registry import ConnectionHandle

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat-websocket"])


class _Close:
    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason


class WebSocketConnection(ConnectionHandle):
    """ConnectionHandle backed by a Starlette WebSocket.

    ``send`` and ``close`` only enqueue; a writer task owned by the
    socket's event loop performs the actual I/O. Enqueueing goes through
    ``call_soon_threadsafe`` so events may be pushed from any thread.
    """

    def __init__(self, websocket: WebSocket, user_id: str, queue_size: Optional[int] = None):
        super().__init__(user_id)
        self.websocket = websocket
        self._queue: asyncio.Queue = asyncio.Queue(
            maxsize=queue_size or DEFAULT_WS_CONFIG.send_queue_size
        )
        self._loop = asyncio.get_running_loop()
        self._writer: Optional[asyncio.Task] = None
        self.dropped_count = 0

    def start(self) -> None:
        self._writer = self._loop.create_task(self._write_loop())

    async def shutdown(self, drain_timeout: float = 1.0) -> None:
        """Stop the writer.

        A closed handle gets up to *drain_timeout* seconds to send its close
        frame; otherwise queued events for a gone client are discarded.
        """
        if self._writer is None or self._writer.done():
            return
        if self.closed:
            done, _ = await asyncio.wait({self._writer}, timeout=drain_timeout)
            if done:
                return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass

    def _push(self, event: OutboundEvent) -> None:
        self._loop.call_soon_threadsafe(self._enqueue, event)

    def _terminate(self, code: int, reason: str) -> None:
        self._loop.call_soon_threadsafe(self._enqueue, _Close(code, reason))

    def _enqueue(self, item) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped_count += 1
            logger.warning(
                "Send queue full for connection %s (user=%s); dropping event",
                self.connection_id,
                self.user_id,
            )

    async def _write_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, _Close):
                    await self.websocket.close(code=item.code, reason=item.reason)
                    return
                await self.websocket.send_text(item.to_json())
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "Write to connection %s failed; stopping writer",
                    self.connection_id,
                    exc_info=True,
                )
                return


@router.websocket(DEFAULT_WS_CONFIG.path)
async def chat_websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for presence, messages, typing and call signalling.

    A newer connection for the same user replaces this one; the old
    socket is closed with code 4000.
    """
    gateway = websocket.app.state.gateway

    # ── Identify before accepting ──────────────────────────────────
    try:
        user_id = validate_user_id(websocket.query_params.get(DEFAULT_WS_CONFIG.user_query_param))
    except ValidationError as exc:
        await websocket.close(code=DEFAULT_WS_CONFIG.invalid_user_close_code, reason=exc.message)
        return

    await websocket.accept()
    conn = WebSocketConnection(websocket, user_id)
    conn.start()
    # queued ahead of the presence roster the registration triggers
    conn.send(
        OutboundEvent(
            OutboundEventType.CONNECTED,
            {"connection_id": conn.connection_id, "user_id": user_id},
            Target.user(user_id),
        )
    )
    gateway.on_connect(user_id, conn)

    try:
        while not conn.closed:
            raw = await websocket.receive_text()
            await gateway.on_inbound_event(conn, raw)
    except WebSocketDisconnect:
        logger.debug("Client disconnected: connection %s (user=%s)", conn.connection_id, user_id)
    except Exception:
        logger.exception("WebSocket receive loop failed for connection %s", conn.connection_id)
    finally:
        gateway.on_disconnect(conn)
        await conn.shutdown()
