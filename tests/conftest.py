"""Shared test fixtures and fakes."""

from pathlib import Path

import pytest

from shelf.constants import CONFIG_DIR_ENV, DATA_DIR_ENV
from shelf.context import ShelfContext
from shelf.errors import TransportError
from shelf.objects import ObjectStore
from shelf.reconciler import StateReconciler
from shelf.store import TrackedFileStore


class FakeRemote:
    """In-memory RemoteSync that can be told to fail."""

    def __init__(self, refs=None, fetch_failures=0, push_error=None):
        self.refs = {ref: dict(files) for ref, files in (refs or {}).items()}
        self.fetch_failures = fetch_failures
        self.push_error = push_error
        self.fetch_calls = 0
        self.push_calls = 0

    def fetch(self, ref):
        self.fetch_calls += 1
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise TransportError("connection reset", ref=ref, operation="fetch")
        return dict(self.refs.get(ref, {}))

    def push(self, ref, files):
        self.push_calls += 1
        if self.push_error is not None:
            raise self.push_error
        self.refs.setdefault(ref, {}).update(files)


class FakePrompter:
    """Prompter answering from a script."""

    def __init__(self, answers=(), select=None):
        self.answers = list(answers)
        self.select = select
        self.asked = []
        self.offered = []

    def choose_many(self, candidates):
        self.offered.append(list(candidates))
        if self.select is None:
            return list(candidates)
        return [c for c in candidates if self.select(c)]

    def choose_one(self, message, options):
        self.asked.append((message, list(options)))
        answer = self.answers.pop(0)
        assert answer in options
        return answer


@pytest.fixture
def home(tmp_path):
    """A fake home directory to keep dotfiles in."""
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def shelf_ctx(tmp_path, monkeypatch, home):
    """Context with isolated data and config directories."""
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "data"))
    monkeypatch.setenv(CONFIG_DIR_ENV, str(tmp_path / "config"))
    monkeypatch.setattr(Path, "home", lambda: home)
    ctx = ShelfContext()
    ctx.ensure_dirs()
    return ctx


@pytest.fixture
def store(shelf_ctx):
    return TrackedFileStore(shelf_ctx.store_path, shelf_ctx.locks_dir, lock_timeout=0.5)


@pytest.fixture
def objects(shelf_ctx):
    return ObjectStore(shelf_ctx.objects_dir)


@pytest.fixture
def reconciler(store, objects, shelf_ctx):
    return StateReconciler(store, objects, shelf_ctx)


@pytest.fixture
def write_file(home):
    """Factory fixture to write files relative to the fake home."""
    def _write(path: str, content="test content"):
        file_path = home / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            file_path.write_bytes(content)
        else:
            file_path.write_text(content)
        return file_path
    return _write


@pytest.fixture
def make_remote():
    return FakeRemote


@pytest.fixture
def make_prompter():
    return FakePrompter
