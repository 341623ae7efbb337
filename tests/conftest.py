import os
import sys
from pathlib import Path

import pytest

# Ensure we can import modules from src/
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    # Prune environment to a minimal safe set
    safe_env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "HOME": str(tmp_path),
        "LANG": os.environ.get("LANG", "C"),
        "LC_ALL": os.environ.get("LC_ALL", "C"),
        "TERM": os.environ.get("TERM", "dumb"),
    }
    monkeypatch.setenv("HOME", safe_env["HOME"])
    monkeypatch.setenv("GESH_HISTFILE", str(tmp_path / ".gesh_history"))
    return tmp_path, safe_env


@pytest.fixture()
def session(sandbox):
    from ops import ShellSession
    tmp_path, safe_env = sandbox
    sess = ShellSession(inherit_env=False, cwd=str(tmp_path))
    for name, value in safe_env.items():
        sess.set_var(name, value)
        sess.export(name)
    return sess


@pytest.fixture()
def lookup():
    """A variable lookup over a fixed mapping."""
    return {"HOME": "/home/gesh", "WHAT": "test", "EMPTY": ""}.get
