"""
star — single-file archive container

This package provides the storage engine and CLI for the .star format: a
fixed header (free-space table + metadata) followed by a region of records,
each a fixed-size FileInfo header and the member's raw bytes.

- Incremental mutation: append, delete and update members in place
- First-fit reuse of byte ranges reclaimed by deletion, with coalescing
- Compaction (pack) rewrites active members contiguously and truncates
- Listing and extraction of active members via the API or the CLI

Deleted members stay physically present until the archive is packed.
See star.layout for the on-disk layout.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "layout",
    "freespace",
    "locator",
    "archive",
    "compactor",
]

# Importable programmatic API is available via star.archive/star.compactor and
# the CLI functions in star.cli (cmd_create/cmd_extract) which take normal parameters.
