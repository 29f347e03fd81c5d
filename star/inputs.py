from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List, Tuple

from .pathutil import norm_path


def scan_inputs(paths: Iterable[str]) -> List[Tuple[str, str]]:
    """Expand command-line inputs into ``(member name, filesystem path)`` pairs.

    A file is stored under its base name. A directory is walked recursively
    and every file below it is stored as ``<dir name>/<relative path>``;
    symlinked subdirectories are not followed. Order is deterministic
    (sorted per directory) so repeated runs produce identical archives.
    """
    out: List[Tuple[str, str]] = []
    for p in [Path(x) for x in paths]:
        if p.is_dir() and not p.is_symlink():
            base = p.resolve().name if p.name in ("", ".", "..") else p.name
            for root, dirnames, filenames in os.walk(str(p)):
                # prune symlink directories to avoid walking into them
                dirnames[:] = sorted(d for d in dirnames if not os.path.islink(os.path.join(root, d)))
                for f in sorted(filenames):
                    full = os.path.join(root, f)
                    rel = os.path.relpath(full, start=str(p))
                    out.append((norm_path(os.path.join(base, rel)), full))
        else:
            out.append((norm_path(p.name), str(p)))
    return out
