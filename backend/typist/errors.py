"""Exception taxonomy for the typing practice service."""


class TypistError(Exception):
    """Base class for typing practice errors."""


class InputError(TypistError):
    """Client asked for something that does not exist (collection, position)."""


class StorageError(TypistError):
    """Progress store is unreachable or holds malformed data."""


class StartupError(TypistError):
    """Passage index could not be built; no session can run without it."""


class CorruptRecordError(StorageError):
    """A stored record exists but cannot be trusted; it may be replaced."""
