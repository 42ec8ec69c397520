# Generic WebSocket server
import asyncio
import json

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from starlette.websockets import WebSocketState

from shared.config.logging import get_logger

logger = get_logger(__name__)


class WebSocketServer:
    """Runs one connection: receive, parse, hand to the engine, send replies.

    ``engine`` must provide ``open()``, ``handle(event)`` and a ``closed``
    flag. Engine calls run on a worker thread and are awaited one at a time,
    so events of a connection are processed in arrival order.
    """

    def __init__(self, engine, parse_event):
        self.engine = engine
        self.parse_event = parse_event

    async def handle_connection(self, websocket: WebSocket):
        await websocket.accept()
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
        logger.info("Client connected: %s", peer)
        try:
            await self._send(websocket, await asyncio.to_thread(self.engine.open))
            while not self.engine.closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                # Handle different message types
                if message.get("text") is not None:
                    raw = message["text"]
                elif message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                else:
                    continue

                try:
                    event = self.parse_event(json.loads(raw))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.debug("Ignoring malformed frame from %s: %s", peer, e)
                    continue

                replies = await asyncio.to_thread(self.engine.handle, event)
                await self._send(websocket, replies)

        except WebSocketDisconnect as e:
            logger.info("Client disconnected: %s code=%s", peer, e.code)
        except Exception as e:
            logger.error("WebSocket error for %s: %s", peer, e, exc_info=True)
        finally:
            await self._close(websocket)

    async def _send(self, websocket: WebSocket, messages: list[BaseModel]):
        for message in messages:
            await websocket.send_json(message.model_dump())

    async def _close(self, websocket: WebSocket):
        if (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        ):
            try:
                await websocket.close()
            except RuntimeError as e:
                logger.debug("Close after transport failure: %s", e)
