import errno
import logging
from pathlib import Path

import pytest

import file_store_scheduler as fss
from file_store_scheduler import FailureReason, FileMover, classify_move_error, move_file, unique_dest_for


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class CountingMove:
    """Stands in for move_file: raises *error* for the first *fail_times* calls (all if None), then moves."""

    def __init__(self, error, fail_times=None):
        self.error = error
        self.fail_times = fail_times
        self.calls = []
        self._real = fss.move_file

    def __call__(self, src, dest):
        self.calls.append((src, dest))
        if self.fail_times is None or len(self.calls) <= self.fail_times:
            raise self.error
        self._real(src, dest)


class TestClassifyMoveError:
    def test_sharing_violation(self):
        class SharingViolation(PermissionError):
            winerror = 32

        assert classify_move_error(SharingViolation(errno.EACCES, "in use")) is FailureReason.TRANSIENT_LOCK

    def test_posix_lock(self):
        assert classify_move_error(BlockingIOError(errno.EAGAIN, "locked")) is FailureReason.TRANSIENT_LOCK
        assert classify_move_error(OSError(errno.EBUSY, "busy")) is FailureReason.TRANSIENT_LOCK

    def test_permission(self):
        assert classify_move_error(PermissionError(errno.EACCES, "denied")) is FailureReason.PERMISSION_DENIED

    def test_other(self):
        assert classify_move_error(OSError(errno.ENOSPC, "full")) is FailureReason.OTHER
        assert classify_move_error(FileNotFoundError(errno.ENOENT, "gone")) is FailureReason.OTHER
        assert classify_move_error(RuntimeError("boom")) is FailureReason.OTHER


class TestUniqueDest:
    def test_appends_suffix(self, tmp_path):
        dest = tmp_path / "x.ts"
        first = unique_dest_for(dest)
        second = unique_dest_for(dest)
        assert first.parent == dest.parent
        assert first.name.startswith("x.ts.")
        assert first != second


class TestMoveFile:
    def test_rename(self, tmp_path):
        src = write(tmp_path / "a.ts", "data")
        dest = tmp_path / "out" / "a.ts"
        dest.parent.mkdir()

        move_file(src, dest)

        assert not src.exists()
        assert dest.read_text(encoding="utf-8") == "data"

    def test_cross_device_fallback(self, tmp_path, monkeypatch):
        src = write(tmp_path / "a.ts", "data")
        dest = tmp_path / "out" / "a.ts"
        dest.parent.mkdir()

        def no_rename(self, target):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr(Path, "rename", no_rename)
        move_file(src, dest)

        assert not src.exists()
        assert dest.read_text(encoding="utf-8") == "data"
        assert [p.name for p in dest.parent.iterdir()] == ["a.ts"]

    def test_cross_device_failure_leaves_no_partial(self, tmp_path, monkeypatch):
        src = write(tmp_path / "a.ts", "data")
        dest = tmp_path / "out" / "a.ts"
        dest.parent.mkdir()

        def no_rename(self, target):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        def broken_copy(s, d):
            Path(d).write_text("half", encoding="utf-8")
            raise OSError(errno.ENOSPC, "No space left on device")

        monkeypatch.setattr(Path, "rename", no_rename)
        monkeypatch.setattr(fss.shutil, "copy2", broken_copy)

        with pytest.raises(OSError):
            move_file(src, dest)

        assert src.exists()
        assert list(dest.parent.iterdir()) == []

    def test_cross_device_source_delete_failure_removes_copy(self, tmp_path, monkeypatch):
        src = write(tmp_path / "a.ts", "data")
        dest = tmp_path / "out" / "a.ts"
        dest.parent.mkdir()
        real_unlink = Path.unlink

        def no_rename(self, target):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        def source_busy(self, missing_ok=False):
            if self == src:
                raise OSError(errno.EBUSY, "Device or resource busy")
            real_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "rename", no_rename)
        monkeypatch.setattr(Path, "unlink", source_busy)

        with pytest.raises(OSError):
            move_file(src, dest)

        assert src.read_text(encoding="utf-8") == "data"
        assert list(dest.parent.iterdir()) == []

    def test_retried_cross_device_move_leaves_no_duplicates(self, tmp_path, logger, make_event, monkeypatch):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"
        real_unlink = Path.unlink

        def no_rename(self, target):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        def source_busy(self, missing_ok=False):
            if self == src:
                raise OSError(errno.EBUSY, "Device or resource busy")
            real_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "rename", no_rename)
        monkeypatch.setattr(Path, "unlink", source_busy)

        outcome = FileMover(logger, max_attempts=3, retry_delay_sec=0, stop_event=make_event()).move(src, dest)

        assert outcome.reason is FailureReason.TRANSIENT_LOCK
        assert outcome.attempts == 3
        assert src.exists()
        assert list(dest.parent.iterdir()) == []


class TestFileMover:
    def test_moves_and_creates_parent(self, tmp_path, logger, make_event):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "deep" / "a.ts"

        outcome = FileMover(logger, stop_event=make_event()).move(src, dest)

        assert outcome.succeeded
        assert outcome.destination == dest
        assert outcome.attempts == 1
        assert not src.exists()
        assert dest.read_text(encoding="utf-8") == "data"

    def test_collision_never_overwrites(self, tmp_path, logger, make_event):
        src = write(tmp_path / "in" / "x.ts", "new")
        dest = write(tmp_path / "store" / "x.ts", "old")

        outcome = FileMover(logger, stop_event=make_event()).move(src, dest)

        assert outcome.succeeded
        assert outcome.destination != dest
        assert outcome.destination.parent == dest.parent
        assert outcome.destination.name.startswith("x.ts.")
        assert outcome.destination.read_text(encoding="utf-8") == "new"
        assert dest.read_text(encoding="utf-8") == "old"

    def test_lock_retried_until_exhausted(self, tmp_path, logger, make_event, monkeypatch):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"
        fake = CountingMove(OSError(errno.EBUSY, "busy"))
        monkeypatch.setattr(fss, "move_file", fake)
        event = make_event()

        outcome = FileMover(logger, max_attempts=2, retry_delay_sec=0.25, stop_event=event).move(src, dest)

        assert not outcome.succeeded
        assert outcome.reason is FailureReason.TRANSIENT_LOCK
        assert outcome.attempts == 2
        assert len(fake.calls) == 2
        assert event.waits == [0.25]
        assert src.exists()

    def test_lock_then_success(self, tmp_path, logger, make_event, monkeypatch):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"
        fake = CountingMove(OSError(errno.EBUSY, "busy"), fail_times=1)
        monkeypatch.setattr(fss, "move_file", fake)

        outcome = FileMover(logger, max_attempts=3, retry_delay_sec=0, stop_event=make_event()).move(src, dest)

        assert outcome.succeeded
        assert outcome.attempts == 2
        assert dest.exists()

    def test_permission_error_not_retried(self, tmp_path, logger, make_event, monkeypatch, caplog):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"
        fake = CountingMove(PermissionError(errno.EACCES, "denied"))
        monkeypatch.setattr(fss, "move_file", fake)
        event = make_event()

        with caplog.at_level(logging.DEBUG):
            outcome = FileMover(logger, max_attempts=5, stop_event=event).move(src, dest)

        assert outcome.reason is FailureReason.PERMISSION_DENIED
        assert outcome.attempts == 1
        assert len(fake.calls) == 1
        assert event.waits == []
        assert "permission-denied" in caplog.text

    def test_other_error_not_retried(self, tmp_path, logger, make_event, monkeypatch):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"
        fake = CountingMove(OSError(errno.ENOSPC, "full"))
        monkeypatch.setattr(fss, "move_file", fake)

        outcome = FileMover(logger, max_attempts=5, stop_event=make_event()).move(src, dest)

        assert outcome.reason is FailureReason.OTHER
        assert len(fake.calls) == 1
        assert isinstance(outcome.error, OSError)

    def test_cancel_during_retry_wait(self, tmp_path, logger, make_event, monkeypatch):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"
        fake = CountingMove(OSError(errno.EBUSY, "busy"))
        monkeypatch.setattr(fss, "move_file", fake)
        event = make_event(stop_after_waits=1)

        outcome = FileMover(logger, max_attempts=10, retry_delay_sec=30, stop_event=event).move(src, dest)

        assert outcome.reason is FailureReason.TRANSIENT_LOCK
        assert len(fake.calls) == 1
        assert event.waits == [30]
        assert outcome.cancelled

    def test_already_cancelled(self, tmp_path, logger, make_event):
        src = write(tmp_path / "in" / "a.ts", "data")
        event = make_event()
        event.set()

        outcome = FileMover(logger, stop_event=event).move(src, tmp_path / "store" / "a.ts")

        assert not outcome.succeeded
        assert outcome.attempts == 0
        assert outcome.cancelled
        assert src.exists()

    @pytest.mark.skipif(fss.fcntl is None, reason="flock is POSIX only")
    def test_file_held_by_another_writer(self, tmp_path, logger, make_event):
        src = write(tmp_path / "in" / "a.ts", "data")
        dest = tmp_path / "store" / "a.ts"

        with src.open("ab") as writer:
            fss.fcntl.flock(writer.fileno(), fss.fcntl.LOCK_EX)
            outcome = FileMover(logger, max_attempts=2, retry_delay_sec=0, stop_event=make_event()).move(src, dest)

        assert outcome.reason is FailureReason.TRANSIENT_LOCK
        assert outcome.attempts == 2
        assert src.exists()
        assert not dest.exists()
