import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, os.fspath(Path(__file__).resolve().parent.parent))


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Create an empty ``proj`` folder and run the test from its parent.

    Paths are then relative (``proj/a.go``) so exclusion substrings never
    collide with the temporary directory's own name.
    """
    monkeypatch.chdir(tmp_path)
    root = Path("proj")
    root.mkdir()
    return root


def write_files(root, files):
    """Create ``files`` (relative path -> text) below ``root``."""
    for rel_path, text in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
