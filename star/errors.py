class StarError(Exception):
    """Base class for star-specific errors."""


class ArchiveIOError(StarError, OSError):
    """Container or member file cannot be opened, read or written."""


# Lookup
class RecordNotFound(StarError, KeyError):
    def __str__(self) -> str:
        return Exception.__str__(self)


class AlreadyDeleted(RecordNotFound):
    pass


class DuplicateMember(StarError):
    pass


# Allocation
class CapacityExceeded(StarError):
    pass


# Bounds/consistency
class TruncatedArchive(StarError):
    pass


class CorruptHeader(StarError):
    pass
