"""Per-message spool: work directory plus the email.txt message copy.

Layout is ``<base>/<prefix><token>/email.txt`` where token is the MTA queue
id when usable, otherwise a unique generated string. The analysis engine
reads the file by path, so the directory and file are group readable.
"""

import errno
import os
import re
import tempfile
from pathlib import Path
from types import TracebackType
from typing import BinaryIO

import structlog

from content_relay.core import queue_logger
from content_relay.exceptions import SpoolError

logger = structlog.get_logger(__name__)

SPOOL_FILENAME = "email.txt"
DIR_MODE = 0o750
FILE_MODE = 0o640

# Queue ids become a path component; anything else falls back to mkdtemp
SAFE_QUEUE_ID = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9_.-]*")


class Spool:
    """Staging area for one message.

    Created with ``Spool.create()``, written while the MTA streams headers
    and body, closed before the engine is asked to scan it, and finally
    removed by ``dispose()``.

    Attributes:
        queue_id: MTA queue id the spool was created for, if any.
        work_dir: The per-message work directory.
        path: The spool file inside ``work_dir``.
    """

    def __init__(self, queue_id: str | None = None) -> None:
        self.queue_id = queue_id
        self.work_dir: Path | None = None
        self.path: Path | None = None
        self._fp: BinaryIO | None = None
        self._size = 0
        self._log = queue_logger(logger, queue_id)

    @classmethod
    def create(cls, base_dir: str | Path, queue_id: str | None = None, prefix: str = "af") -> "Spool":
        """Create the work directory and open the spool file.

        Args:
            base_dir: Directory holding all per-message work directories.
            queue_id: Optional MTA queue id used for a predictable name.
            prefix: Name prefix of the work directory.

        Returns:
            A Spool with its file open for writing.

        Raises:
            SpoolError: If neither directory naming method works or the
                file cannot be created. Anything created is removed first.
        """
        spool = cls(queue_id)
        try:
            work_dir = spool._make_work_dir(Path(base_dir), prefix)
            spool._open_file(work_dir)
        except OSError as e:
            spool._log.error("spool_create_failed", base_dir=str(base_dir), error=str(e))
            spool.dispose()
            raise SpoolError(f"Failed to create spool in {base_dir}: {e}") from e
        return spool

    def _make_work_dir(self, base_dir: Path, prefix: str) -> Path:
        if self.queue_id and SAFE_QUEUE_ID.fullmatch(self.queue_id):
            candidate = base_dir / f"{prefix}{self.queue_id}"
            try:
                candidate.mkdir(mode=DIR_MODE)
                self.work_dir = candidate
            except OSError as e:
                self._log.debug("spool_dir_fallback", path=str(candidate), error=str(e))

        if self.work_dir is None:
            self.work_dir = Path(tempfile.mkdtemp(prefix=prefix, dir=base_dir))

        # mkdir honours the umask and mkdtemp forces 0700
        self.work_dir.chmod(DIR_MODE)
        self._log.debug("spool_dir_created", path=str(self.work_dir))
        return self.work_dir

    def _open_file(self, work_dir: Path) -> None:
        path = work_dir / SPOOL_FILENAME
        fd = os.open(path, os.O_RDWR | os.O_CREAT | os.O_EXCL, FILE_MODE)
        self.path = path
        try:
            os.fchmod(fd, FILE_MODE)
            self._fp = os.fdopen(fd, "w+b")
        except OSError:
            os.close(fd)
            raise
        self._log.debug("spool_file_created", path=str(path))

    @property
    def closed(self) -> bool:
        return self._fp is None

    @property
    def size(self) -> int:
        """Number of bytes written so far."""
        return self._size

    def write(self, data: bytes) -> None:
        """Append raw bytes to the spool file.

        Raises:
            SpoolError: If the file is not open or the write fails.
        """
        if self._fp is None:
            raise SpoolError(f"Spool file {self.path} is not open")
        try:
            self._fp.write(data)
        except OSError as e:
            self._log.error("spool_write_failed", path=str(self.path), error=str(e))
            raise SpoolError(f"Could not write to spool file {self.path}: {e}") from e
        self._size += len(data)

    def write_header(self, name: str, value: str | bytes) -> None:
        """Append one header as ``name: value`` with a bare LF terminator.

        The engine's parser expects LF line endings, not SMTP's CRLF.
        """
        if isinstance(value, bytes):
            raw_value = value.rstrip(b"\r\n")
        else:
            raw_value = value.rstrip("\r\n").encode("utf-8", "surrogateescape")
        self.write(name.encode("utf-8", "surrogateescape") + b": " + raw_value + b"\n")

    def write_header_end(self) -> None:
        """Append the blank line separating headers from the body."""
        self.write(b"\n")

    def close(self) -> None:
        """Close the spool file; closing an already closed spool is a no-op.

        Raises:
            SpoolError: If flushing or closing fails.
        """
        if self._fp is None:
            return
        fp, self._fp = self._fp, None
        try:
            fp.close()
        except OSError as e:
            self._log.error("spool_close_failed", path=str(self.path), error=str(e))
            raise SpoolError(f"Could not close spool file {self.path}: {e}") from e
        self._log.debug("spool_file_closed", path=str(self.path), size=self._size)

    def dispose(self) -> None:
        """Close, unlink and remove the work directory. Never raises.

        Safe to call repeatedly and on a spool that was never created.
        Missing files count as removed; a non-empty directory is logged.
        """
        if self._fp is not None:
            try:
                self._fp.close()
            except OSError as e:
                self._log.warning("spool_close_failed", path=str(self.path), error=str(e))
            self._fp = None

        if self.path is not None:
            try:
                self.path.unlink(missing_ok=True)
                self._log.debug("spool_file_removed", path=str(self.path))
            except OSError as e:
                self._log.warning("spool_unlink_failed", path=str(self.path), error=str(e))
            self.path = None

        if self.work_dir is not None:
            try:
                self.work_dir.rmdir()
                self._log.debug("spool_dir_removed", path=str(self.work_dir))
            except FileNotFoundError:
                pass
            except OSError as e:
                if e.errno in (errno.ENOTEMPTY, errno.EEXIST):
                    self._log.warning("spool_dir_not_empty", path=str(self.work_dir))
                else:
                    self._log.warning(
                        "spool_dir_remove_failed", path=str(self.work_dir), error=str(e)
                    )
            self.work_dir = None

        self._size = 0

    def __enter__(self) -> "Spool":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()
