"""Immutable passage index grouped by collection (book)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from shared.config.logging import get_logger
from typist.errors import StartupError
from typist.services.normalizer import normalize

logger = get_logger(__name__)


@dataclass(frozen=True)
class Passage:
    collection: str
    position: int
    book: int
    chapter: int
    verse: int
    text: str


class PassageIndex:
    """Finalized mapping of collection name to its ordered passages."""

    def __init__(self, collections: Mapping[str, Iterable[Passage]]):
        self._collections: dict[str, tuple[Passage, ...]] = {
            name: tuple(passages) for name, passages in collections.items()
        }
        if not self._collections:
            raise StartupError("Passage index is empty")
        empty = [name for name, passages in self._collections.items() if not passages]
        if empty:
            raise StartupError(f"Collections without passages: {', '.join(empty)}")

    def names(self) -> list[str]:
        return list(self._collections)

    def get(self, name: str) -> tuple[Passage, ...] | None:
        return self._collections.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._collections

    def __len__(self) -> int:
        return len(self._collections)


def build_passage_index(verses: Iterable[Mapping[str, Any]]) -> PassageIndex:
    """Group raw verse rows by ``book_name`` keeping corpus order."""
    grouped: dict[str, list[Passage]] = {}
    for row in verses:
        try:
            name = str(row["book_name"])
            text = normalize(str(row["text"])).strip()
            passage = Passage(
                collection=name,
                position=len(grouped.get(name, ())),
                book=int(row.get("book", 0)),
                chapter=int(row.get("chapter", 0)),
                verse=int(row.get("verse", 0)),
                text=text,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise StartupError(f"Malformed verse entry {row!r}: {exc}") from exc
        # An empty passage could never be matched and would block its collection.
        if not text:
            raise StartupError(f"Verse entry has no text after normalization: {row!r}")
        grouped.setdefault(name, []).append(passage)
    return PassageIndex(grouped)


def load_passage_index(path: str | Path) -> PassageIndex:
    """Load a corpus file of the form ``{"metadata": {...}, "verses": [...]}``."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise StartupError(f"Unable to read passage corpus {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise StartupError(f"Passage corpus {path} is not valid JSON: {exc}") from exc

    verses = data.get("verses") if isinstance(data, dict) else None
    if not isinstance(verses, list):
        raise StartupError(f"Passage corpus {path} has no 'verses' list")

    index = build_passage_index(verses)
    metadata = data.get("metadata") or {}
    logger.info(
        "[Passages] Loaded %d collections (%d verses) from %s (%s)",
        len(index),
        len(verses),
        path,
        metadata.get("name", "unnamed corpus"),
    )
    return index
