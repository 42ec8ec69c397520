"""WebSocket route for the typing practice exercise."""

from __future__ import annotations

from fastapi import APIRouter, Query, WebSocket

from shared.config.app_config import QUIT_TOKEN
from shared.config.logging import get_logger
from shared.websocket_server import WebSocketServer
from typist import initialization
from typist.models import ClientEvent
from typist.services.session_engine import SessionEngine
from typist.services.session_service import TypingSessionService

router = APIRouter(
    prefix="/typist",
    tags=["typist"],
    responses={404: {"description": "Not found"}},
)

logger = get_logger("typist.routes")

MAX_UID_LENGTH = 128

session_service = TypingSessionService()


@router.websocket("/ws")
async def typist_websocket(websocket: WebSocket, uid: str | None = Query(default=None)):
    """Bidirectional websocket for one typing session."""
    passages = initialization.get_passage_index()
    store = initialization.get_progress_store()
    if passages is None or store is None:
        logger.error("Typing practice module is not initialized; refusing connection")
        await websocket.close(code=1011)
        return

    if uid and len(uid) > MAX_UID_LENGTH:
        logger.warning("Discarding oversized uid (%d chars)", len(uid))
        uid = None

    session = session_service.create_session(uid)
    engine = SessionEngine(session, passages, store, quit_token=QUIT_TOKEN)
    logger.info("Typing session user=%s", session.user_id)
    await WebSocketServer(engine, ClientEvent.model_validate).handle_connection(websocket)
