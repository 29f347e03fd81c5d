from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from star.archive import StarArchive, create
from star.compactor import defragment
from star.constants import VERBOSE_DETAILED, VERBOSE_SIMPLE, log_level_for
from star.errors import ArchiveIOError, RecordNotFound, StarError
from star.inputs import scan_inputs


def _make_logger(verbosity: int) -> logging.Logger:
    """Return the ``star`` logger configured for -v/-vv reporting on stderr."""
    log = logging.getLogger("star")
    log.setLevel(log_level_for(verbosity))
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("\t%(message)s"))
        log.addHandler(handler)
        log.propagate = False
    return log


def _read_inputs(inputs: List[str]) -> List[Tuple[str, bytes]]:
    loaded = []
    for name, full in scan_inputs(inputs):
        try:
            with open(full, "rb") as fh:
                loaded.append((name, fh.read()))
        except OSError as exc:
            raise ArchiveIOError(f"Cannot read {full}: {exc.strerror or exc}") from exc
    return loaded


def cmd_create(archive: str, inputs: List[str], *, ignore_failed_read: bool = False, log: Optional[logging.Logger] = None) -> bool:
    """Create a new archive from filesystem paths.

    Args:
        archive: Path to the .star file to write (replaced if it exists).
        inputs: Files or directories to store; directories are walked.
        ignore_failed_read: Skip unreadable inputs instead of aborting.
    """
    members = scan_inputs(inputs)
    report = create(archive, members, skip_unreadable=ignore_failed_read, log=log)
    for name, reason in report.skipped:
        print(f"Warning: skipped {name}: {reason}", file=sys.stderr)
    return True


def cmd_list(archive: str, *, verbosity: int = 0, log: Optional[logging.Logger] = None) -> bool:
    """List active members, one per line.

    With -v the size precedes the name; with -vv the content offset too,
    followed by the free ranges of the archive.
    """
    with StarArchive(archive, log=log) as ar:
        members = ar.members()
        free = ar.free_spaces()
    for info in members:
        if verbosity >= VERBOSE_DETAILED:
            print(f"{info.file_size}\t{info.start_position}\t{info.filename}")
        elif verbosity >= VERBOSE_SIMPLE:
            print(f"{info.file_size}\t{info.filename}")
        else:
            print(info.filename)
    if verbosity >= VERBOSE_DETAILED:
        print(f"free ranges: {len(free)}")
        for slot in free:
            print(f"free\t{slot.size}\t{slot.start_position}")
    if log is not None:
        log.info("%d active member(s)", len(members))
    return True


def cmd_extract(archive: str, names: List[str], *, outdir: str = ".", log: Optional[logging.Logger] = None) -> bool:
    """Extract members (all active members when ``names`` is empty) below ``outdir``."""
    with StarArchive(archive, log=log) as ar:
        if not names:
            ar.extract_all(outdir)
            return True
        for name in names:
            ar.extract_member(ar.find(name), outdir)
    return True


def cmd_append(archive: str, inputs: List[str], *, log: Optional[logging.Logger] = None) -> bool:
    """Append files to an existing archive, reusing free ranges first."""
    loaded = _read_inputs(inputs)
    with StarArchive(archive, writable=True, log=log) as ar:
        for name, data in loaded:
            ar.append(name, data)
    return True


def cmd_update(archive: str, inputs: List[str], *, log: Optional[logging.Logger] = None) -> bool:
    """Replace members with new file contents; files not yet archived are appended."""
    loaded = _read_inputs(inputs)
    with StarArchive(archive, writable=True, log=log) as ar:
        for name, data in loaded:
            try:
                ar.update(name, data)
            except RecordNotFound:
                ar.log.info("%s not in archive; appending", name)
                ar.append(name, data)
    return True


def cmd_delete(archive: str, names: List[str], *, log: Optional[logging.Logger] = None) -> bool:
    """Mark members as deleted; their space is reused by later appends."""
    with StarArchive(archive, writable=True, log=log) as ar:
        for name in names:
            ar.delete(name)
    return True


def cmd_pack(archive: str, *, log: Optional[logging.Logger] = None) -> bool:
    """Compact the archive, dropping deleted members and free space."""
    report = defragment(archive, log=log)
    print(f"Packed: {report.records} member(s), {report.reclaimed} bytes reclaimed")
    return True


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\nUse --help for the list of options.\n")


def main(argv: List[str] | None = None):
    ap = _ArgumentParser(
        prog="star",
        description="Create, list, extract and modify .star archives",
        epilog=(
            "Examples: star -c out.star a.txt b.txt | star --list out.star | "
            "star -v --delete out.star a.txt"
        ),
    )
    ops = ap.add_mutually_exclusive_group(required=True)
    ops.add_argument("-c", "--create", dest="op", action="store_const", const="create", help="Create a new archive from the given files")
    ops.add_argument("-x", "--extract", dest="op", action="store_const", const="extract", help="Extract members (all when none are named)")
    ops.add_argument("-t", "--list", dest="op", action="store_const", const="list", help="List archive contents")
    ops.add_argument("--delete", dest="op", action="store_const", const="delete", help="Delete the named members")
    ops.add_argument("-u", "--update", dest="op", action="store_const", const="update", help="Replace members with newer file contents")
    ops.add_argument("-r", "--append", dest="op", action="store_const", const="append", help="Append files without touching existing members")
    ops.add_argument("-p", "--pack", dest="op", action="store_const", const="pack", help="Defragment the archive, removing free space")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="Report progress; -vv for detailed reports")
    ap.add_argument("-C", "--directory", default=".", help="Extraction directory (default: current directory)")
    ap.add_argument("--ignore-failed-read", action="store_true", help="With --create, skip unreadable files instead of failing")
    ap.add_argument("archive", help="Archive path")
    ap.add_argument("files", nargs="*", help="Files to store, or member names for --extract/--delete")

    args = ap.parse_args(argv)
    if args.op == "delete" and not args.files:
        ap.error("--delete requires at least one member name")
    if args.op in ("append", "update") and not args.files:
        ap.error(f"--{args.op} requires at least one file")

    log = _make_logger(args.verbose)
    try:
        if args.op == "create":
            cmd_create(args.archive, args.files, ignore_failed_read=args.ignore_failed_read, log=log)
        elif args.op == "extract":
            cmd_extract(args.archive, args.files, outdir=args.directory, log=log)
        elif args.op == "list":
            cmd_list(args.archive, verbosity=args.verbose, log=log)
        elif args.op == "delete":
            cmd_delete(args.archive, args.files, log=log)
        elif args.op == "update":
            cmd_update(args.archive, args.files, log=log)
        elif args.op == "append":
            cmd_append(args.archive, args.files, log=log)
        elif args.op == "pack":
            cmd_pack(args.archive, log=log)
        else:
            raise RuntimeError("Unknown operation")
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (StarError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
