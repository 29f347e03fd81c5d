from __future__ import annotations

import os


def norm_path(p: str) -> str:
    """Normalize member names to a canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments, NUL bytes and empty names
    """
    if "\x00" in p:
        raise ValueError("Member name may not contain NUL")
    p = p.replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    if not parts:
        raise ValueError("Member name may not be empty")
    return "/".join(parts)


def safe_output_path(outdir: str, name: str) -> str:
    """Map a member name to a path below ``outdir``; names escaping it are rejected."""
    rel = norm_path(name)
    return os.path.join(outdir, *rel.split("/"))
