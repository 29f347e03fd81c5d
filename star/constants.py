import logging


# Free-space table capacity (fixed number of on-disk slots)
MAX_FREE_SPACES = 100

# Member names: 255-byte field, at most 254 significant bytes plus NUL
FILENAME_FIELD_SIZE = 255
MAX_FILENAME_BYTES = FILENAME_FIELD_SIZE - 1

# Record status
STATUS_ACTIVE = 0
STATUS_DELETED = 1

# Signed 32-bit fields bound every size and offset in the format
INT32_MAX = 2**31 - 1


# Verbosity levels for reporting (-v simple, -vv detailed)
VERBOSE_NONE = 0
VERBOSE_SIMPLE = 1
VERBOSE_DETAILED = 2

VERBOSITY_LOG_LEVELS = {
    VERBOSE_NONE: logging.WARNING,
    VERBOSE_SIMPLE: logging.INFO,
    VERBOSE_DETAILED: logging.DEBUG,
}


DEFAULT_COPY_CHUNK = 1_048_576  # 1 MiB


def log_level_for(verbosity: int) -> int:
    return VERBOSITY_LOG_LEVELS[max(VERBOSE_NONE, min(verbosity, VERBOSE_DETAILED))]
