import json

import pytest

import typist.initialization as typist_initialization
from typist.errors import StartupError
from typist.services.progress_store import SqlProgressStore


@pytest.fixture(autouse=True)
def _reset_globals(monkeypatch):
    monkeypatch.setattr(typist_initialization, "passage_index", None)
    monkeypatch.setattr(typist_initialization, "progress_store", None)


def test_missing_corpus_aborts_startup(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(typist_initialization, "PASSAGES_PATH", str(tmp_path / "missing.json"))
    with pytest.raises(StartupError):
        typist_initialization.initialize()
    assert typist_initialization.get_progress_store() is None


def test_unknown_backend_aborts_startup(monkeypatch, tmp_path) -> None:
    corpus = tmp_path / "kjv.json"
    corpus.write_text(
        json.dumps({"verses": [{"book_name": "X", "book": 1, "chapter": 1, "verse": 1, "text": "a"}]}),
        encoding="utf-8",
    )
    monkeypatch.setattr(typist_initialization, "PASSAGES_PATH", str(corpus))
    monkeypatch.setattr(typist_initialization, "PROGRESS_BACKEND", "mongo")
    with pytest.raises(StartupError):
        typist_initialization.initialize()


def test_initialize_and_shutdown(monkeypatch, tmp_path) -> None:
    corpus = tmp_path / "kjv.json"
    corpus.write_text(
        json.dumps({"verses": [{"book_name": "X", "book": 1, "chapter": 1, "verse": 1, "text": "a"}]}),
        encoding="utf-8",
    )
    monkeypatch.setattr(typist_initialization, "PASSAGES_PATH", str(corpus))
    monkeypatch.setattr(typist_initialization, "PROGRESS_BACKEND", "sql")
    monkeypatch.setattr(typist_initialization, "DATABASE_URL", f"sqlite:///{tmp_path / 'progress.db'}")

    typist_initialization.initialize()
    assert typist_initialization.get_passage_index().names() == ["X"]
    assert isinstance(typist_initialization.get_progress_store(), SqlProgressStore)

    typist_initialization.shutdown()
    assert typist_initialization.get_progress_store() is None
