import os
import time

from pdf_toolkit.workers.cleanup import CleanupScheduler, remove_path


def _touch(path, content=b"x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def test_remove_path_handles_files_dirs_and_absence(tmp_path):
    file_path = _touch(tmp_path / "a.pdf")
    dir_path = tmp_path / "split_1"
    _touch(dir_path / "page_1.pdf")

    assert remove_path(file_path) is True
    assert remove_path(dir_path) is True
    assert remove_path(file_path) is False
    assert not dir_path.exists()


def test_schedule_is_deferred_and_deduplicated(tmp_path):
    scheduler = CleanupScheduler(tmp_path, default_delay=3600)
    target = _touch(tmp_path / "merged.pdf")
    try:
        scheduler.schedule([target, target])

        assert scheduler.pending == 1
        assert target.exists()
    finally:
        scheduler.shutdown(drain=False)


def test_run_pending_removes_due_entries_only(tmp_path):
    scheduler = CleanupScheduler(tmp_path, default_delay=3600)
    soon = _touch(tmp_path / "soon.pdf")
    later = _touch(tmp_path / "later.pdf")
    try:
        scheduler.schedule([soon], delay=60)
        scheduler.schedule([later], delay=7200)

        removed = scheduler.run_pending(now=time.monotonic() + 120)

        assert removed == 1
        assert not soon.exists()
        assert later.exists()
        assert scheduler.pending == 1
    finally:
        scheduler.shutdown(drain=False)


def test_already_removed_entry_is_not_an_error(tmp_path):
    scheduler = CleanupScheduler(tmp_path, default_delay=3600)
    gone = _touch(tmp_path / "gone.pdf")
    try:
        scheduler.schedule([gone], delay=60)
        gone.unlink()

        assert scheduler.run_pending(now=time.monotonic() + 120) == 0
        assert scheduler.pending == 0
    finally:
        scheduler.shutdown(drain=False)


def test_shutdown_drains_pending_entries(tmp_path):
    scheduler = CleanupScheduler(tmp_path, default_delay=3600)
    first = _touch(tmp_path / "one.pdf")
    folder = tmp_path / "convert_1"
    _touch(folder / "page-1.png")

    scheduler.schedule([first, folder])
    removed = scheduler.shutdown(drain=True)

    assert removed == 2
    assert scheduler.pending == 0
    assert not first.exists()
    assert not folder.exists()


def test_worker_removes_paths_after_delay(tmp_path):
    scheduler = CleanupScheduler(tmp_path)
    target = _touch(tmp_path / "quick.pdf")
    try:
        scheduler.schedule([target], delay=0.05)
        deadline = time.monotonic() + 5
        while target.exists() and time.monotonic() < deadline:
            time.sleep(0.02)

        assert not target.exists()
    finally:
        scheduler.shutdown(drain=False)


def test_sweep_stale_removes_only_old_visible_entries(tmp_path):
    old = _touch(tmp_path / "old.pdf")
    fresh = _touch(tmp_path / "fresh.pdf")
    hidden = _touch(tmp_path / ".keep")
    past = time.time() - 10_000
    os.utime(old, (past, past))
    os.utime(hidden, (past, past))

    removed = CleanupScheduler(tmp_path).sweep_stale(max_age=3600)

    assert removed == 1
    assert not old.exists()
    assert fresh.exists()
    assert hidden.exists()
