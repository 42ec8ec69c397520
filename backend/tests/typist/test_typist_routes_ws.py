import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import typist.initialization as typist_initialization
import typist.routes as typist_routes
from typist.services.passage_index import build_passage_index
from typist.services.progress_store import JsonFileProgressStore


def _build_app() -> FastAPI:
    app = FastAPI()
    app.include_router(typist_routes.router)
    return app


@pytest.fixture
def store(monkeypatch, tmp_path):
    passages = build_passage_index(
        [
            {"book_name": "X", "book": 1, "chapter": 1, "verse": 1, "text": "In the beginning"},
            {"book_name": "X", "book": 1, "chapter": 1, "verse": 2, "text": "God created"},
        ]
    )
    progress = JsonFileProgressStore(tmp_path / "progress")
    monkeypatch.setattr(typist_initialization, "passage_index", passages)
    monkeypatch.setattr(typist_initialization, "progress_store", progress)
    return progress


def test_connect_lists_collections(store) -> None:
    with TestClient(_build_app()).websocket_connect("/typist/ws?uid=abc") as ws:
        books = ws.receive_json()
        assert books == {"type": "books", "content": ["X"], "progress": {"X": 0}}


def test_typing_session_happy_path(store) -> None:
    app = _build_app()
    with TestClient(app).websocket_connect("/typist/ws?uid=reader") as ws:
        ws.receive_json()
        ws.send_json({"type": "select_collection", "content": "X"})
        verse = ws.receive_json()
        assert verse["type"] == "verse"
        assert verse["content"] == "In the beginning"
        assert verse["verse"] == {"book_name": "X", "book": 1, "chapter": 1, "verse": 1}
        assert verse["number"] == 1
        assert verse["total"] == 2

        ws.send_json({"type": "submit", "content": "in the beginning"})
        assert ws.receive_json()["type"] == "wrong"
        stats = ws.receive_json()
        assert stats["type"] == "stats"
        assert stats["stats"]["progress"]["mistakes"] == 1

        ws.send_json({"type": "submit", "content": "In the beginning\n"})
        assert ws.receive_json()["type"] == "correct"
        assert ws.receive_json()["stats"]["progress"]["current_index"] == 1
        assert ws.receive_json()["content"] == "God created"

        ws.send_json({"type": "submit", "content": "quit"})
        assert ws.receive_json() == {"type": "response", "content": "goodbye"}
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()

    assert store.list_all("reader") == {"X": 50}

    # Reconnecting with the same uid resumes at the second passage.
    with TestClient(app).websocket_connect("/typist/ws?uid=reader") as ws:
        assert ws.receive_json()["progress"] == {"X": 50}
        ws.send_json({"type": "select_collection", "content": "X"})
        verse = ws.receive_json()
        assert verse["number"] == 2
        assert verse["stats"]["progress"]["mistakes"] == 1


def test_malformed_frames_are_ignored(store) -> None:
    with TestClient(_build_app()).websocket_connect("/typist/ws") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json(["no", "type"])
        ws.send_json({"type": "submit", "content": "nothing selected"})
        ws.send_json({"type": "unknown"})
        ws.send_json({"type": "jump", "content": 5})
        error = ws.receive_json()
        assert error["type"] == "error"


def test_numeric_jump_content(store) -> None:
    with TestClient(_build_app()).websocket_connect("/typist/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "select_collection", "content": "X"})
        ws.receive_json()
        ws.send_json({"type": "jump", "content": 2})
        verse = ws.receive_json()
        assert verse["type"] == "verse"
        assert verse["number"] == 2


def test_uninitialized_module_refuses_connection(monkeypatch) -> None:
    monkeypatch.setattr(typist_initialization, "passage_index", None)
    monkeypatch.setattr(typist_initialization, "progress_store", None)
    with pytest.raises(WebSocketDisconnect):
        with TestClient(_build_app()).websocket_connect("/typist/ws") as ws:
            ws.receive_json()
