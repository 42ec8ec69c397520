"""Typing practice module initialization and startup routines."""

import logging
from typing import Optional

from shared.config.app_config import DATABASE_URL, PASSAGES_PATH, PROGRESS_BACKEND, PROGRESS_DIR
from typist.errors import StartupError, StorageError
from typist.services.passage_index import PassageIndex, load_passage_index
from typist.services.progress_store import ProgressStore, build_progress_store

logger = logging.getLogger(__name__)

# Global state - shared with routes
passage_index: Optional[PassageIndex] = None
progress_store: Optional[ProgressStore] = None


def initialize():
    """Load the passage corpus and open the progress store.

    Raises:
        StartupError: if either one is unusable; no session can run without them.
    """
    global passage_index, progress_store

    logger.info("Loading passages from %s...", PASSAGES_PATH)
    passage_index = load_passage_index(PASSAGES_PATH)

    logger.info("Opening %s progress store...", PROGRESS_BACKEND)
    try:
        progress_store = build_progress_store(
            PROGRESS_BACKEND,
            progress_dir=PROGRESS_DIR,
            database_url=DATABASE_URL,
        )
    except (StorageError, ValueError) as e:
        raise StartupError(f"Progress store unavailable: {e}") from e

    logger.info("Typing practice module initialized with %d collections", len(passage_index))


def shutdown():
    """Release the progress store."""
    global progress_store
    if progress_store is not None:
        progress_store.close()
        progress_store = None


def get_passage_index() -> Optional[PassageIndex]:
    return passage_index


def get_progress_store() -> Optional[ProgressStore]:
    return progress_store
