"""Tests for track/untrack/save/restore and status reconciliation."""

import os
import stat

import pytest

from shelf.context import canonicalize
from shelf.core import EntryStatus
from shelf.errors import (
    AlreadyTrackedError,
    ConflictError,
    NotAFileError,
    NotTrackedError,
    PathNotFoundError,
    ShelfIOError,
)
from shelf.hashing import fingerprint


class TestTrack:
    """Test tracking new files."""

    def test_track_records_current_fingerprint(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        entry = reconciler.track(f)

        assert entry.logical_path == canonicalize(f)
        assert entry.fingerprint == fingerprint(b"X")
        assert reconciler.store.get(canonicalize(f)) == entry
        assert reconciler.get_state(f).status == EntryStatus.CLEAN

    def test_track_stores_baseline_content(self, reconciler, write_file):
        f = write_file(".vimrc", "set number\n")
        entry = reconciler.track(f)
        assert reconciler.objects.get(entry.fingerprint) == b"set number\n"

    def test_track_missing(self, reconciler, home):
        with pytest.raises(PathNotFoundError) as exc:
            reconciler.track(home / ".nope")
        assert exc.value.operation == "track"
        assert len(reconciler.store.list()) == 0

    def test_track_directory(self, reconciler, home):
        (home / ".config").mkdir()
        with pytest.raises(NotAFileError):
            reconciler.track(home / ".config")

    def test_track_twice(self, reconciler, write_file):
        f = write_file(".bashrc")
        reconciler.track(f)
        with pytest.raises(AlreadyTrackedError):
            reconciler.track(f)

    def test_relative_path_is_canonicalized(self, reconciler, write_file, home, monkeypatch):
        write_file(".bashrc")
        monkeypatch.chdir(home)

        entry = reconciler.track(".bashrc")

        assert entry.logical_path == canonicalize(home / ".bashrc")
        assert os.path.isabs(entry.logical_path)

    def test_tilde_is_expanded(self, reconciler, write_file, home, monkeypatch):
        monkeypatch.setenv("HOME", str(home))
        write_file(".zshrc")
        entry = reconciler.track("~/.zshrc")
        assert entry.logical_path == canonicalize(home / ".zshrc")

    def test_symlink_and_target_are_one_entry(self, reconciler, write_file, home):
        target = write_file("dotfiles/bashrc")
        link = home / ".bashrc"
        link.symlink_to(target)

        reconciler.track(link)
        with pytest.raises(AlreadyTrackedError):
            reconciler.track(target)

    def test_dotdot_components(self, reconciler, write_file, home):
        f = write_file(".config/git/config")
        entry = reconciler.track(home / ".config" / "nvim" / ".." / "git" / "config")
        assert entry.logical_path == canonicalize(f)


class TestTrackMany:
    """Test batch tracking with partial success."""

    def test_partial_success(self, reconciler, write_file, home):
        a = write_file(".bashrc", "a")
        b = write_file(".zshrc", "b")
        reconciler.track(b)

        result = reconciler.track_many([a, b, home / ".missing", a])

        assert result.succeeded == [canonicalize(a)]
        assert set(result.failed) == {canonicalize(b), canonicalize(home / ".missing")}
        assert not result.all_ok
        assert len(reconciler.store.list()) == 2

    def test_all_ok(self, reconciler, write_file):
        files = [write_file(f".rc{i}", str(i)) for i in range(5)]
        result = reconciler.track_many(files)

        assert result.all_ok
        for f in files:
            assert reconciler.store.get(canonicalize(f)).fingerprint == fingerprint(f.read_bytes())


class TestStatus:
    """Test status computation."""

    def test_edit_makes_dirty_without_writing(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        entry = reconciler.track(f)

        f.write_text("Y")

        assert reconciler.get_state(f).status == EntryStatus.DIRTY
        # Read-only: baseline untouched
        assert reconciler.store.get(entry.logical_path) == entry
        assert list(reconciler.objects.fingerprints()) == [entry.fingerprint]

    def test_missing(self, reconciler, write_file):
        f = write_file(".bashrc")
        reconciler.track(f)
        f.unlink()
        assert reconciler.get_state(f).status == EntryStatus.MISSING

    def test_replaced_by_directory(self, reconciler, write_file):
        f = write_file(".bashrc")
        reconciler.track(f)
        f.unlink()
        f.mkdir()
        assert reconciler.get_state(f).status == EntryStatus.DELETED

    def test_revert_is_clean(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        reconciler.track(f)
        f.write_text("Y")
        f.write_text("X")
        assert reconciler.get_state(f).status == EntryStatus.CLEAN

    def test_get_state_untracked(self, reconciler, write_file):
        with pytest.raises(NotTrackedError):
            reconciler.get_state(write_file(".bashrc"))

    @pytest.mark.skipif(os.geteuid() == 0, reason="root can read anything")
    def test_unreadable_file_raises(self, reconciler, write_file):
        f = write_file(".netrc")
        reconciler.track(f)
        f.chmod(0)
        try:
            with pytest.raises(ShelfIOError):
                reconciler.get_state(f)
        finally:
            f.chmod(stat.S_IRUSR | stat.S_IWUSR)


class TestList:
    """Test list and dirty filtering."""

    def test_dirty_scenario(self, reconciler, home):
        """Track, edit, list dirty, save, list dirty again."""
        f = home / "a" / ".bashrc"
        f.parent.mkdir()
        f.write_text("X")
        reconciler.track(f)

        states = reconciler.list()
        assert [(s.path, s.status) for s in states] == [(canonicalize(f), EntryStatus.CLEAN)]

        f.write_text("Y")
        dirty = reconciler.list(dirty_only=True)
        assert [(s.path, s.status) for s in dirty] == [(canonicalize(f), EntryStatus.DIRTY)]

        reconciler.save(f)
        assert reconciler.list(dirty_only=True) == []

    def test_dirty_only_includes_missing_and_deleted(self, reconciler, write_file):
        clean = write_file(".clean")
        dirty = write_file(".dirty")
        missing = write_file(".missing")
        deleted = write_file(".deleted")
        for f in (clean, dirty, missing, deleted):
            reconciler.track(f)

        dirty.write_text("changed")
        missing.unlink()
        deleted.unlink()
        deleted.mkdir()

        statuses = {s.path: s.status for s in reconciler.list(dirty_only=True)}
        assert statuses == {
            canonicalize(dirty): EntryStatus.DIRTY,
            canonicalize(missing): EntryStatus.MISSING,
            canonicalize(deleted): EntryStatus.DELETED,
        }

    def test_ordered_by_path(self, reconciler, write_file):
        for name in (".zshrc", ".bashrc", ".inputrc"):
            reconciler.track(write_file(name))
        paths = [s.path for s in reconciler.list()]
        assert paths == sorted(paths)


class TestUntrack:
    """Test untracking single paths and directories."""

    def test_untrack_then_again(self, reconciler, write_file):
        f = write_file(".bashrc")
        reconciler.track(f)

        result = reconciler.untrack(f)
        assert result.removed == [canonicalize(f)]
        assert reconciler.store.get(canonicalize(f)) is None
        assert f.exists()

        with pytest.raises(NotTrackedError):
            reconciler.untrack(f)

    def test_recursive_untrack(self, reconciler, write_file, home):
        a = write_file(".config/i3/config")
        b = write_file(".config/i3/workspaces/main")
        c = write_file(".config/i3status/config")
        for f in (a, b, c):
            reconciler.track(f)

        result = reconciler.untrack(home / ".config" / "i3", recursive=True)

        assert sorted(result.removed) == sorted([canonicalize(a), canonicalize(b)])
        assert reconciler.store.snapshot().paths == [canonicalize(c)]

    def test_recursive_untrack_twice_is_noop(self, reconciler, write_file, home):
        reconciler.track(write_file(".config/i3/config"))
        reconciler.untrack(home / ".config", recursive=True)

        again = reconciler.untrack(home / ".config", recursive=True)
        assert again.noop
        assert again.removed == []

    def test_untrack_missing_file(self, reconciler, write_file):
        """A tracked file that was deleted can still be untracked."""
        f = write_file(".bashrc")
        reconciler.track(f)
        f.unlink()
        reconciler.untrack(f)
        assert len(reconciler.store.list()) == 0


class TestSave:
    """Test advancing the baseline."""

    def test_save_after_edit(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        reconciler.track(f)
        f.write_text("Y")

        entry = reconciler.save(f)

        assert entry.fingerprint == fingerprint(b"Y")
        assert reconciler.get_state(f).status == EntryStatus.CLEAN
        assert reconciler.objects.get(entry.fingerprint) == b"Y"

    def test_save_is_idempotent(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        reconciler.track(f)
        f.write_text("Y")

        first = reconciler.save(f)
        second = reconciler.save(f)

        assert first.fingerprint == second.fingerprint
        assert second.last_saved_at >= first.last_saved_at

    def test_round_trip_returns_to_original_fingerprint(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        original = reconciler.track(f).fingerprint

        f.write_text("Y")
        assert reconciler.save(f).fingerprint != original
        f.write_text("X")
        assert reconciler.save(f).fingerprint == original

    def test_save_untracked(self, reconciler, write_file):
        with pytest.raises(NotTrackedError) as exc:
            reconciler.save(write_file(".bashrc"))
        assert exc.value.operation == "save"

    def test_save_missing_keeps_entry(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        entry = reconciler.track(f)
        f.unlink()

        with pytest.raises(PathNotFoundError):
            reconciler.save(f)

        assert reconciler.store.get(entry.logical_path) == entry
        assert reconciler.get_state(f).status == EntryStatus.MISSING

    def test_save_all(self, reconciler, write_file):
        clean = write_file(".clean", "c")
        dirty = write_file(".dirty", "d")
        missing = write_file(".missing", "m")
        for f in (clean, dirty, missing):
            reconciler.track(f)
        dirty.write_text("d2")
        missing.unlink()

        result = reconciler.save_all()

        assert result.succeeded == [canonicalize(dirty)]
        assert list(result.failed) == [canonicalize(missing)]
        assert "missing" in result.failed[canonicalize(missing)]
        assert reconciler.get_state(dirty).status == EntryStatus.CLEAN


class TestRestore:
    """Test rewriting files from their baseline."""

    def test_restore_dirty(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        reconciler.track(f)
        f.write_text("Y")

        reconciler.restore(f)

        assert f.read_text() == "X"
        assert reconciler.get_state(f).status == EntryStatus.CLEAN

    def test_restore_missing(self, reconciler, write_file):
        f = write_file(".config/nvim/init.lua", "vim.opt.number = true\n")
        reconciler.track(f)
        f.unlink()
        f.parent.rmdir()

        reconciler.restore(f)

        assert f.read_text() == "vim.opt.number = true\n"

    def test_restore_preserves_mode(self, reconciler, write_file):
        f = write_file(".netrc", "machine a")
        f.chmod(0o600)
        reconciler.track(f)
        f.write_text("machine b")

        reconciler.restore(f)

        assert stat.S_IMODE(f.stat().st_mode) == 0o600
        assert f.read_text() == "machine a"

    def test_restore_over_directory_refused(self, reconciler, write_file):
        f = write_file(".bashrc")
        reconciler.track(f)
        f.unlink()
        f.mkdir()

        with pytest.raises(NotAFileError):
            reconciler.restore(f)
        assert f.is_dir()

    def test_restore_without_baseline_object(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        entry = reconciler.track(f)
        reconciler.objects.path_for(entry.fingerprint).unlink()

        with pytest.raises(ShelfIOError):
            reconciler.restore(f)

    def test_restore_untracked(self, reconciler, write_file):
        with pytest.raises(NotTrackedError):
            reconciler.restore(write_file(".bashrc"))


class TestDiff:
    """Test baseline diffs."""

    def test_diff_after_edit(self, reconciler, write_file):
        f = write_file(".bashrc", "export A=1\n")
        reconciler.track(f)
        f.write_text("export A=2\n")

        text = reconciler.diff(f)

        assert "-export A=1\n" in text
        assert "+export A=2\n" in text
        assert f"--- a{canonicalize(f)}" in text

    def test_diff_clean_is_empty(self, reconciler, write_file):
        f = write_file(".bashrc")
        reconciler.track(f)
        assert reconciler.diff(f) == ""

    def test_diff_missing(self, reconciler, write_file):
        f = write_file(".bashrc", "line\n")
        reconciler.track(f)
        f.unlink()

        text = reconciler.diff(f)
        assert "+++ /dev/null" in text
        assert "-line\n" in text

    def test_diff_many_defaults_to_dirty_files(self, reconciler, write_file):
        edited = write_file(".bashrc", "a\n")
        clean = write_file(".zshrc", "z\n")
        reconciler.track(edited)
        reconciler.track(clean)
        edited.write_text("b\n")

        text = reconciler.diff_many()

        assert canonicalize(edited) in text
        assert canonicalize(clean) not in text
        assert reconciler.diff_many([clean]) == ""


class TestWriteContent:
    """Test writes of pulled content."""

    def test_write_updates_baseline(self, reconciler, write_file):
        f = write_file(".bashrc", "old")
        entry = reconciler.track(f)

        updated = reconciler.write_content(f, b"new", expected=entry.fingerprint)

        assert f.read_bytes() == b"new"
        assert updated.fingerprint == fingerprint(b"new")
        assert reconciler.objects.get(updated.fingerprint) == b"new"

    def test_write_new_file_tracks_it(self, reconciler, home):
        target = home / ".config" / "app.toml"

        reconciler.write_content(target, b"x = 1\n", expected=None)

        assert target.read_bytes() == b"x = 1\n"
        assert reconciler.get_state(target).status == EntryStatus.CLEAN

    def test_write_refuses_changed_file(self, reconciler, write_file):
        f = write_file(".bashrc", "old")
        entry = reconciler.track(f)
        f.write_text("edited")

        with pytest.raises(ConflictError) as exc:
            reconciler.write_content(f, b"new", expected=entry.fingerprint)

        assert exc.value.paths == [canonicalize(f)]
        assert f.read_text() == "edited"
        assert reconciler.store.get(entry.logical_path) == entry

    def test_write_refuses_file_that_appeared(self, reconciler, write_file):
        f = write_file(".bashrc", "mine")

        with pytest.raises(ConflictError):
            reconciler.write_content(f, b"theirs", expected=None)

        assert f.read_text() == "mine"
        assert reconciler.store.list() == []

    def test_write_keeps_file_mode(self, reconciler, write_file):
        f = write_file(".profile", "old")
        f.chmod(0o600)
        entry = reconciler.track(f)

        reconciler.write_content(f, b"new", expected=entry.fingerprint)

        assert stat.S_IMODE(f.stat().st_mode) == 0o600


class TestPrune:
    """Test removal of unreferenced baseline objects."""

    def test_prune_keeps_current_baselines(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        reconciler.track(f)
        f.write_text("Y")
        current = reconciler.save(f).fingerprint

        assert reconciler.prune_objects(grace=0) == 1
        assert list(reconciler.objects.fingerprints()) == [current]

    def test_prune_spares_fresh_objects(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        reconciler.track(f)
        f.write_text("Y")
        reconciler.save(f)

        assert reconciler.prune_objects() == 0
        assert len(list(reconciler.objects.fingerprints())) == 2

    def test_prune_removes_orphan_left_by_interrupted_track(self, reconciler, write_file):
        f = write_file(".bashrc", "X")
        entry = reconciler.track(f)
        orphan = reconciler.objects.put(b"never recorded")
        old = os.stat(reconciler.objects.path_for(orphan)).st_mtime - 2 * 3600
        os.utime(reconciler.objects.path_for(orphan), (old, old))

        assert reconciler.prune_objects() == 1
        assert list(reconciler.objects.fingerprints()) == [entry.fingerprint]


class TestSuggest:
    """Test discovery of candidates and selection."""

    @pytest.fixture
    def dotfiles(self, write_file):
        return {
            "bashrc": write_file(".bashrc", "alias ll='ls -l'\n"),
            "nvim": write_file(".config/nvim/init.lua", "vim.opt.number = true\n"),
            "notes": write_file("notes.txt", "todo\n"),
            "git": write_file(".git/config", "[core]\n"),
            "binary": write_file("bin.dat", b"\x00\x01\x02"),
        }

    def test_candidates_catalog_first(self, reconciler, dotfiles, home):
        reconciler.track(dotfiles["bashrc"])

        candidates = reconciler.suggest_candidates(home)

        assert candidates == [dotfiles["nvim"], dotfiles["notes"]]

    def test_candidates_default_root_is_home(self, reconciler, dotfiles):
        assert dotfiles["bashrc"] in reconciler.suggest_candidates()

    def test_suggest_tracks_selection(self, reconciler, dotfiles, home, make_prompter):
        prompter = make_prompter(select=lambda c: c.endswith("notes.txt"))

        result = reconciler.suggest(prompter, home)

        assert result.succeeded == [canonicalize(dotfiles["notes"])]
        assert str(dotfiles["bashrc"]) in prompter.offered[0]
        assert reconciler.store.get(canonicalize(dotfiles["notes"])) is not None

    def test_suggest_ignores_unoffered_choices(self, reconciler, dotfiles, home, make_prompter):
        class Sneaky(make_prompter):
            def choose_many(self, candidates):
                return ["/etc/passwd"]

        result = reconciler.suggest(Sneaky(), home)

        assert result.outcomes == []
        assert len(reconciler.store.list()) == 0

    def test_suggest_nothing_found(self, reconciler, tmp_path, make_prompter):
        empty = tmp_path / "empty"
        empty.mkdir()
        prompter = make_prompter()

        assert reconciler.suggest(prompter, empty).outcomes == []
        assert prompter.offered == []
