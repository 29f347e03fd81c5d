from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Dict

from star.archive import StarArchive


def _random_bytes(size: int) -> bytes:
    return os.urandom(size)


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs").mkdir()
    (root / "docs" / "notes").mkdir()
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    files["docs/readme.txt"] = content

    bin_data = _random_bytes(2048)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    files["docs/notes/binary.bin"] = bin_data

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = b""

    (root / "top.txt").write_bytes(b"top level\n")
    files["top.txt"] = b"top level\n"
    return files


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None):
        cmd = [sys.executable, "-m", "star.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def test_create_list_extract_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            src.mkdir()
            files = _build_fixture_tree(src)
            archive = root / "out.star"

            self.run_cli(["-c", str(archive), "docs", "top.txt"], cwd=src)

            listing = self.run_cli(["-t", str(archive)]).stdout.splitlines()
            self.assertEqual(
                listing,
                ["docs/readme.txt", "docs/notes/binary.bin", "docs/notes/empty.txt", "top.txt"],
            )

            sized = self.run_cli(["-tv", str(archive)]).stdout.splitlines()
            self.assertIn(f"{len(files['docs/readme.txt'])}\tdocs/readme.txt", sized)

            dest = root / "dest"
            self.run_cli(["-x", str(archive), "-C", str(dest)])
            for name, data in files.items():
                self.assertEqual((dest / name).read_bytes(), data, name)

            # single member extraction
            one = root / "one"
            self.run_cli(["-x", str(archive), "top.txt", "-C", str(one)])
            self.assertEqual(sorted(p.name for p in one.iterdir()), ["top.txt"])

    def test_modify_and_pack(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "a.txt").write_bytes(b"alpha")
            (root / "b.txt").write_bytes(b"bravo" * 10)
            (root / "c.txt").write_bytes(b"charlie")
            archive = root / "m.star"

            self.run_cli(["-c", str(archive), "a.txt", "b.txt"], cwd=root)
            self.run_cli(["-r", str(archive), "c.txt"], cwd=root)
            proc = self.run_cli(["-r", str(archive), "c.txt"], cwd=root, expect=2)
            self.assertIn("Error", proc.stderr)

            self.run_cli(["--delete", str(archive), "a.txt"])
            self.assertEqual(self.run_cli(["-t", str(archive)]).stdout.split(), ["b.txt", "c.txt"])
            proc = self.run_cli(["--delete", str(archive), "a.txt"], expect=2)
            self.assertIn("deleted", proc.stderr)
            proc = self.run_cli(["--delete", str(archive), "nope.txt"], expect=2)
            self.assertIn("not found", proc.stderr)

            detail = self.run_cli(["-tvv", str(archive)]).stdout
            self.assertIn("free ranges: 1", detail)
            self.assertIn("free\t273\t812", detail)

            # -u replaces existing members and appends new ones
            (root / "b.txt").write_bytes(b"B")
            (root / "d.txt").write_bytes(b"delta")
            self.run_cli(["-u", str(archive), "b.txt", "d.txt"], cwd=root)
            with StarArchive(str(archive)) as ar:
                self.assertEqual(ar.read("b.txt"), b"B")
                self.assertEqual(ar.read("d.txt"), b"delta")
                self.assertEqual(sorted(i.filename for i in ar.members()), ["b.txt", "c.txt", "d.txt"])

            proc = self.run_cli(["-p", str(archive)])
            self.assertIn("Packed: 3 member(s)", proc.stdout)
            detail = self.run_cli(["-tvv", str(archive)]).stdout
            self.assertIn("free ranges: 0", detail)
            with StarArchive(str(archive)) as ar:
                self.assertEqual(ar.free_spaces(), [])
                self.assertEqual(ar.metadata.num_files, 3)
                self.assertEqual(ar.read("c.txt"), b"charlie")

    def test_ignore_failed_read(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "ok.txt").write_bytes(b"ok")
            archive = root / "f.star"

            proc = self.run_cli(["-c", str(archive), "ok.txt", "missing.txt"], cwd=root, expect=2)
            self.assertIn("Error", proc.stderr)
            self.assertFalse(archive.exists())

            proc = self.run_cli(["-c", "--ignore-failed-read", str(archive), "ok.txt", "missing.txt"], cwd=root)
            self.assertIn("skipped missing.txt", proc.stderr)
            self.assertEqual(self.run_cli(["-t", str(archive)]).stdout.split(), ["ok.txt"])

    def test_verbose_reports_on_stderr(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "a.txt").write_bytes(b"alpha")
            archive = root / "v.star"
            proc = self.run_cli(["-v", "-c", str(archive), "a.txt"], cwd=root)
            self.assertEqual(proc.stdout, "")
            self.assertIn("Added a.txt", proc.stderr)
            quiet = self.run_cli(["-c", str(archive), "a.txt"], cwd=root)
            self.assertEqual(quiet.stderr, "")

    def test_usage_errors(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            archive = root / "x.star"
            self.run_cli(["--help"])
            self.run_cli([str(archive)], expect=1)
            self.run_cli(["-c", "-t", str(archive)], expect=1)
            self.run_cli(["--delete", str(archive)], expect=1)
            self.run_cli(["-r", str(archive)], expect=1)
            proc = self.run_cli(["-t", str(archive)], expect=2)
            self.assertIn("Cannot open archive", proc.stderr)


if __name__ == "__main__":
    unittest.main()
