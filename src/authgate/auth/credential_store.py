"""Multi-client credential store shared by every process of the same user.

All client identities live in one JSON document (by default
``.authgate-tokens.json``) keyed by ``client_id``::

    {"tokens": {"<client_id>": {...CredentialRecord...}}}

Writes are linearised across processes by a
:class:`~authgate.auth.filelock.LockManager` and published atomically: the
merged document is written to a temporary sibling via
:func:`tempfile.NamedTemporaryFile`, chmodded to ``0o600``, fsynced, then
moved into place with ``os.replace``. Readers take no lock; because the
canonical file is only ever replaced by a rename, a reader sees either the
old or the new document, never a torn one.

See Also:
    :class:`~authgate.auth.flow.DeviceFlow` -- the only writer in the CLI.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from authgate.auth.filelock import LockManager, MarkerFileLockManager
from authgate.exceptions import LockError, NotFoundError, StorageError
from authgate.models import CredentialRecord, CredentialStoreDocument

logger = logging.getLogger(__name__)


class CredentialStore:
    """Read/write :class:`~authgate.models.CredentialRecord` objects in one token file.

    Args:
        path: The token file. Its directory is created on first save.
        lock_manager: Lock used to serialise writers. Defaults to a
            :class:`~authgate.auth.filelock.MarkerFileLockManager`.

    Example::

        store = CredentialStore(Path("tokens.json"))
        store.save(record)
        assert store.load(record.client_id) == record
    """

    def __init__(self, path: Path, lock_manager: Optional[LockManager] = None) -> None:
        self._path = Path(path)
        self._lock_manager = lock_manager or MarkerFileLockManager()

    @property
    def path(self) -> Path:
        """The filesystem path of the shared token file."""
        return self._path

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def load_document(self) -> CredentialStoreDocument:
        """Read every valid record in the token file.

        A record that fails validation (short token, unknown token type,
        stored under another client's key) is skipped with a warning; it
        does not make the rest of the file unreadable.

        Returns:
            The parsed document. A missing file reads as an empty document.

        Raises:
            StorageError: If the file cannot be read, is not JSON, or is not
                shaped like ``{"tokens": {<client_id>: {...}}}``.
        """
        document = CredentialStoreDocument()
        for client_id, entry in self._read_entries().items():
            try:
                document.put(self._validate_entry(client_id, entry))
            except StorageError as exc:
                logger.warning("Skipping record: %s", exc)
        return document

    def load(self, client_id: str) -> CredentialRecord:
        """Return the stored record for *client_id*.

        The result may be stale relative to a concurrent writer; callers
        must check expiry themselves.

        Raises:
            NotFoundError: If the file is absent or holds no record for
                *client_id*.
            StorageError: If the file is unreadable, or the record for
                *client_id* is invalid.
        """
        if not self._path.is_file():
            raise NotFoundError(f"no token file at {self._path}")
        entry = self._read_entries().get(client_id)
        if entry is None:
            raise NotFoundError(f"no tokens found for client_id: {client_id}")
        return self._validate_entry(client_id, entry)

    def list_records(self) -> list[CredentialRecord]:
        """Return every valid stored record, sorted by client id."""
        document = self.load_document()
        return [document.tokens[key] for key in sorted(document.tokens)]

    def _read_entries(self) -> dict[str, dict[str, Any]]:
        """Return the raw ``tokens`` mapping, checking only the document shape."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"failed to read token file {self._path}: {exc}") from exc
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise StorageError(f"failed to parse token file {self._path}: {exc}") from exc

        if not isinstance(data, dict):
            raise StorageError(f"failed to parse token file {self._path}: not a JSON object")
        entries = data.get("tokens") or {}
        if not isinstance(entries, dict) or not all(
            isinstance(entry, dict) for entry in entries.values()
        ):
            raise StorageError(
                f"failed to parse token file {self._path}: 'tokens' must map client ids to objects"
            )
        return entries

    def _validate_entry(self, client_id: str, entry: dict[str, Any]) -> CredentialRecord:
        try:
            record = CredentialRecord.model_validate(entry)
        except ValidationError as exc:
            raise StorageError(
                f"invalid record for client_id {client_id} in {self._path}: {exc}"
            ) from exc
        if record.client_id != client_id:
            raise StorageError(
                f"record stored under '{client_id}' in {self._path} "
                f"belongs to client '{record.client_id}'"
            )
        return record

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def save(self, record: CredentialRecord) -> None:
        """Merge *record* into the token file under ``record.client_id``.

        The on-disk document is re-read while the lock is held so that a
        record written by another process since our last read is kept.
        Other clients' entries are written back exactly as read, even ones
        that fail validation, so one bad record never costs the others.

        Raises:
            LockTimeoutError: If another writer holds the lock too long.
            StorageError: If the merged document cannot be published.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        lock = self._lock_manager.acquire(self._path)
        try:
            entries = self._read_for_merge()
            entries[record.client_id] = record.model_dump(mode="json")
            text = json.dumps({"tokens": entries}, indent=2) + "\n"
            self._atomic_write(text)
        finally:
            try:
                lock.release()
            except LockError as exc:
                logger.warning("Failed to release lock: %s", exc)
        logger.debug("Saved tokens for %s to %s", record.client_id, self._path)

    def _read_for_merge(self) -> dict[str, dict[str, Any]]:
        """Raw entries of the current file; an unparseable file restarts from empty."""
        try:
            return self._read_entries()
        except StorageError as exc:
            logger.warning("Discarding unreadable token file contents: %s", exc)
            return {}

    def _atomic_write(self, text: str) -> None:
        """Publish *text* as the token file via temp file + rename."""
        fd = None
        tmp_path: Optional[str] = None
        try:
            fd = tempfile.NamedTemporaryFile(
                mode="w",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            )
            tmp_path = fd.name
            # Restrictive permissions before any secret hits the disk
            os.chmod(tmp_path, 0o600)
            fd.write(text)
            fd.flush()
            os.fsync(fd.fileno())
            fd.close()
            fd = None
        except BaseException as exc:
            # Includes KeyboardInterrupt: never leave a temp file behind.
            if fd is not None:
                fd.close()
            if tmp_path is not None:
                _remove_quietly(tmp_path)
            if isinstance(exc, OSError):
                raise StorageError(f"failed to write temp file: {exc}") from exc
            raise

        try:
            os.replace(tmp_path, self._path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError as cleanup_exc:
                raise StorageError(
                    f"failed to rename temp file: {exc}; "
                    f"additionally failed to remove temp file: {cleanup_exc}",
                    cleanup_error=cleanup_exc,
                ) from exc
            raise StorageError(f"failed to rename temp file: {exc}") from exc


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to remove temp file %s: %s", path, exc)
