"""Tests for the per-message spool."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from content_relay.exceptions import SpoolError
from content_relay.transport.spool import DIR_MODE, FILE_MODE, SPOOL_FILENAME, Spool


class TestSpoolCreate:
    """Tests for Spool.create()."""

    def test_create_uses_queue_id_for_directory(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "4XyZ12", prefix="af")

        assert spool.work_dir == work_dir / "af4XyZ12"
        assert spool.path == work_dir / "af4XyZ12" / SPOOL_FILENAME
        assert spool.path.is_file()
        assert not spool.closed
        spool.dispose()

    def test_create_sets_permissions(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")

        assert (spool.work_dir.stat().st_mode & 0o777) == DIR_MODE
        assert (spool.path.stat().st_mode & 0o777) == FILE_MODE
        spool.dispose()

    def test_create_without_queue_id_generates_name(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, None, prefix="af")

        assert spool.work_dir.parent == work_dir
        assert spool.work_dir.name.startswith("af")
        assert (spool.work_dir.stat().st_mode & 0o777) == DIR_MODE
        spool.dispose()

    def test_create_falls_back_on_collision(self, work_dir: Path) -> None:
        existing = work_dir / "afQ1"
        existing.mkdir()

        spool = Spool.create(work_dir, "Q1")

        assert spool.work_dir != existing
        assert spool.work_dir.name.startswith("af")
        assert existing.is_dir()
        spool.dispose()
        assert existing.is_dir()

    def test_create_falls_back_on_unsafe_queue_id(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "../escape")

        assert spool.work_dir.parent == work_dir
        assert not (work_dir.parent / "escape").exists()
        spool.dispose()

    @pytest.mark.parametrize("queue_id", ["Q1\n", "Q1\r\n", "\nQ1"])
    def test_create_falls_back_on_queue_id_with_newline(
        self, work_dir: Path, queue_id: str
    ) -> None:
        spool = Spool.create(work_dir, queue_id)

        assert spool.work_dir.parent == work_dir
        assert "\n" not in spool.work_dir.name
        assert not (work_dir / f"af{queue_id}").exists()
        spool.dispose()

    def test_two_spools_without_queue_id_are_distinct(self, work_dir: Path) -> None:
        first = Spool.create(work_dir)
        second = Spool.create(work_dir)

        assert first.work_dir != second.work_dir
        first.dispose()
        second.dispose()

    def test_create_in_missing_base_raises_spool_error(self, tmp_path: Path) -> None:
        missing = tmp_path / "does-not-exist"

        with pytest.raises(SpoolError) as exc_info:
            Spool.create(missing, "Q1")

        assert "Failed to create spool" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)
        assert not missing.exists()


class TestSpoolWrite:
    """Tests for writing headers and body to the spool."""

    def test_header_crlf_is_normalized(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        path = spool.path

        spool.write_header("X-Test", "value\r\n")
        spool.close()

        assert path.read_bytes() == b"X-Test: value\n"
        spool.dispose()

    def test_header_bytes_value(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        path = spool.path

        spool.write_header("Subject", b"caf\xc3\xa9\r\n")
        spool.close()

        assert path.read_bytes() == b"Subject: caf\xc3\xa9\n"
        spool.dispose()

    def test_full_message_layout(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        path = spool.path

        spool.write_header("From", "a@x")
        spool.write_header("Subject", "hi")
        spool.write_header_end()
        spool.write(b"line one\r\n")
        spool.write(b"line two\r\n")
        spool.close()

        assert path.read_bytes() == b"From: a@x\nSubject: hi\n\nline one\r\nline two\r\n"
        assert spool.size == len(path.read_bytes())
        spool.dispose()

    def test_write_after_close_raises(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        spool.close()

        with pytest.raises(SpoolError):
            spool.write(b"late")
        spool.dispose()

    def test_write_failure_surfaces_os_error(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        real_fp = spool._fp
        broken = MagicMock()
        broken.write.side_effect = OSError(28, "No space left on device")
        spool._fp = broken

        with pytest.raises(SpoolError) as exc_info:
            spool.write(b"data")

        assert "No space left" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)
        spool._fp = real_fp
        spool.dispose()

    def test_close_failure_raises_spool_error(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        real_fp = spool._fp
        broken = MagicMock()
        broken.close.side_effect = OSError(5, "Input/output error")
        spool._fp = broken

        with pytest.raises(SpoolError):
            spool.close()

        assert spool.closed
        real_fp.close()
        spool.dispose()

    def test_close_twice_is_noop(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")

        spool.close()
        spool.close()

        assert spool.closed
        spool.dispose()


class TestSpoolDispose:
    """Tests for Spool.dispose()."""

    def test_dispose_removes_file_and_directory(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        directory, path = spool.work_dir, spool.path

        spool.dispose()

        assert not path.exists()
        assert not directory.exists()
        assert spool.work_dir is None
        assert spool.path is None
        assert spool.closed

    def test_dispose_twice_is_noop(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")

        spool.dispose()
        spool.dispose()

        assert list(work_dir.iterdir()) == []

    def test_dispose_never_initialized(self) -> None:
        spool = Spool()

        spool.dispose()

        assert spool.work_dir is None

    def test_dispose_tolerates_already_removed(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        spool.close()
        spool.path.unlink()
        spool.work_dir.rmdir()

        spool.dispose()

        assert spool.work_dir is None

    def test_dispose_tolerates_non_empty_directory(self, work_dir: Path) -> None:
        spool = Spool.create(work_dir, "Q1")
        directory = spool.work_dir
        (directory / "parts").mkdir()

        spool.dispose()

        assert directory.exists()
        assert not (directory / SPOOL_FILENAME).exists()
        assert spool.work_dir is None

    def test_context_manager_disposes(self, work_dir: Path) -> None:
        with Spool.create(work_dir, "Q1") as spool:
            directory = spool.work_dir
            spool.write(b"x")

        assert not directory.exists()
