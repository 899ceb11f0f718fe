"""Tests for the shared multi-client credential store."""

from __future__ import annotations

import json
import multiprocessing
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from authgate.auth.credential_store import CredentialStore
from authgate.auth.filelock import MarkerFileLockManager, lock_path_for
from authgate.exceptions import LockError, NotFoundError, StorageError
from authgate.models import CredentialRecord


@pytest.fixture()
def store(tmp_path: Path) -> CredentialStore:
    """Create a CredentialStore that writes to a temp directory."""
    lock_manager = MarkerFileLockManager(max_attempts=500, retry_delay=0.005)
    return CredentialStore(tmp_path / "tokens.json", lock_manager=lock_manager)


def _tmp_files(directory: Path) -> list[Path]:
    return [p for p in directory.iterdir() if p.name.endswith(".tmp")]


def _save_from_other_process(path: str, client_id: str) -> None:
    """Runs in a spawned interpreter, so it cannot use fixtures."""
    store = CredentialStore(
        Path(path), lock_manager=MarkerFileLockManager(max_attempts=3000, retry_delay=0.005)
    )
    store.save(
        CredentialRecord(
            access_token=f"token-for-{client_id}",
            token_type="Bearer",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            client_id=client_id,
        )
    )


class TestLoad:
    def test_missing_file_is_not_found(self, store: CredentialStore) -> None:
        with pytest.raises(NotFoundError):
            store.load("anything")

    def test_missing_client_is_not_found(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        store.save(record)
        with pytest.raises(NotFoundError, match="other-client"):
            store.load("other-client")

    def test_corrupt_file_is_storage_error(self, store: CredentialStore) -> None:
        store.path.write_text("{not json")
        with pytest.raises(StorageError):
            store.load("anything")

    def test_null_tokens_reads_as_empty(self, store: CredentialStore) -> None:
        store.path.write_text('{"tokens": null}')
        assert store.load_document().tokens == {}
        with pytest.raises(NotFoundError):
            store.load("anything")

    def test_mismatched_key_is_skipped(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        data = {"tokens": {"wrong-key": json.loads(record.model_dump_json())}}
        store.path.write_text(json.dumps(data))
        assert store.load_document().tokens == {}
        with pytest.raises(StorageError, match="wrong-key"):
            store.load("wrong-key")

    @pytest.mark.parametrize("document", [[], {"tokens": []}, {"tokens": {"a": "text"}}])
    def test_wrong_shape_is_storage_error(self, store: CredentialStore, document) -> None:
        store.path.write_text(json.dumps(document))
        with pytest.raises(StorageError):
            store.load_document()

    def test_invalid_record_does_not_hide_the_others(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        bad = json.loads(record.model_dump_json())
        bad.update(client_id="client-b", token_type="bearer")
        data = {"tokens": {record.client_id: json.loads(record.model_dump_json()), "client-b": bad}}
        store.path.write_text(json.dumps(data))

        assert [r.client_id for r in store.list_records()] == [record.client_id]
        assert store.load(record.client_id) == record
        with pytest.raises(StorageError, match="client-b"):
            store.load("client-b")

    def test_list_records_sorted(self, store: CredentialStore, record_factory) -> None:
        for client_id in ["zeta", "alpha", "mid"]:
            store.save(record_factory(client_id=client_id))
        assert [r.client_id for r in store.list_records()] == ["alpha", "mid", "zeta"]

    def test_list_records_empty_without_file(self, store: CredentialStore) -> None:
        assert store.list_records() == []


class TestSave:
    def test_save_and_load(self, store: CredentialStore, record: CredentialRecord) -> None:
        store.save(record)
        loaded = store.load(record.client_id)
        assert loaded == record

    def test_document_shape(self, store: CredentialStore, record: CredentialRecord) -> None:
        store.save(record)
        data = json.loads(store.path.read_text())
        entry = data["tokens"][record.client_id]
        assert entry["access_token"] == record.access_token
        assert entry["refresh_token"] == record.refresh_token
        assert entry["token_type"] == "Bearer"
        assert entry["client_id"] == record.client_id
        assert "expires_at" in entry

    def test_file_permissions(self, store: CredentialStore, record: CredentialRecord) -> None:
        store.save(record)
        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600

    def test_creates_parent_directory(self, tmp_path: Path, record: CredentialRecord) -> None:
        nested = CredentialStore(tmp_path / "a" / "b" / "tokens.json")
        nested.save(record)
        assert nested.load(record.client_id) == record

    def test_preserves_other_clients(self, store: CredentialStore, record_factory) -> None:
        store.save(record_factory(client_id="client-a", access_token="token-for-client-a"))
        store.save(record_factory(client_id="client-b", access_token="token-for-client-b"))

        assert store.load("client-a").access_token == "token-for-client-a"
        assert store.load("client-b").access_token == "token-for-client-b"

    def test_overwrites_same_client(self, store: CredentialStore, record_factory) -> None:
        store.save(record_factory(access_token="first-access-token"))
        store.save(record_factory(access_token="second-access-token"))
        assert len(store.list_records()) == 1
        assert store.list_records()[0].access_token == "second-access-token"

    def test_corrupt_document_is_replaced_on_save(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        store.path.write_text("garbage")
        store.save(record)
        assert store.load(record.client_id) == record

    def test_invalid_record_of_another_client_survives_save(
        self, store: CredentialStore, record_factory
    ) -> None:
        keep = record_factory(client_id="client-a", access_token="token-for-client-a")
        bad = json.loads(record_factory(client_id="client-b").model_dump_json())
        bad["token_type"] = "bearer"
        data = {"tokens": {"client-a": json.loads(keep.model_dump_json()), "client-b": bad}}
        store.path.write_text(json.dumps(data))

        store.save(record_factory(client_id="client-c", access_token="token-for-client-c"))

        saved = json.loads(store.path.read_text())["tokens"]
        assert sorted(saved) == ["client-a", "client-b", "client-c"]
        assert saved["client-b"] == bad
        assert store.load("client-a") == keep

    def test_no_leftovers(self, store: CredentialStore, record: CredentialRecord) -> None:
        store.save(record)
        assert _tmp_files(store.path.parent) == []
        assert not lock_path_for(store.path).exists()

    def test_concurrent_saves_keep_every_client(
        self, store: CredentialStore, record_factory
    ) -> None:
        client_ids = [f"client-{i:02d}" for i in range(20)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda cid: store.save(record_factory(client_id=cid)), client_ids))

        assert sorted(r.client_id for r in store.list_records()) == client_ids
        assert _tmp_files(store.path.parent) == []

    def test_saves_from_separate_processes_keep_every_client(
        self, store: CredentialStore
    ) -> None:
        client_ids = [f"proc-client-{i}" for i in range(6)]
        ctx = multiprocessing.get_context("spawn")
        procs = [
            ctx.Process(target=_save_from_other_process, args=(str(store.path), cid))
            for cid in client_ids
        ]
        for proc in procs:
            proc.start()
        for proc in procs:
            proc.join(timeout=60)

        assert [proc.exitcode for proc in procs] == [0] * len(procs)
        records = {r.client_id: r for r in store.list_records()}
        assert sorted(records) == client_ids
        assert records["proc-client-3"].access_token == "token-for-proc-client-3"
        assert _tmp_files(store.path.parent) == []
        assert not lock_path_for(store.path).exists()


class TestAtomicWriteFailures:
    def test_rename_failure_removes_temp_file(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        with patch(
            "authgate.auth.credential_store.os.replace", side_effect=OSError("rename boom")
        ):
            with pytest.raises(StorageError, match="rename boom") as exc_info:
                store.save(record)

        assert exc_info.value.cleanup_error is None
        assert _tmp_files(store.path.parent) == []
        assert not store.path.exists()
        assert not lock_path_for(store.path).exists()

    def test_rename_and_cleanup_failure_reports_both(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        with patch(
            "authgate.auth.credential_store.os.replace", side_effect=OSError("rename boom")
        ), patch(
            "authgate.auth.credential_store.os.unlink", side_effect=OSError("unlink boom")
        ):
            with pytest.raises(StorageError) as exc_info:
                store.save(record)

        message = str(exc_info.value)
        assert "rename boom" in message
        assert "unlink boom" in message
        assert isinstance(exc_info.value.cleanup_error, OSError)

    def test_write_failure_is_storage_error(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        with patch("authgate.auth.credential_store.os.fsync", side_effect=OSError("disk full")):
            with pytest.raises(StorageError, match="disk full"):
                store.save(record)
        assert _tmp_files(store.path.parent) == []

    def test_previous_document_survives_failed_save(
        self, store: CredentialStore, record_factory
    ) -> None:
        original = record_factory(client_id="keep-me")
        store.save(original)
        with patch(
            "authgate.auth.credential_store.os.replace", side_effect=OSError("rename boom")
        ):
            with pytest.raises(StorageError):
                store.save(record_factory(client_id="new-client"))

        assert store.load("keep-me") == original
        with pytest.raises(NotFoundError):
            store.load("new-client")

    def test_lock_release_failure_is_not_raised(
        self, store: CredentialStore, record: CredentialRecord
    ) -> None:
        with patch(
            "authgate.auth.filelock.FileLock.release", side_effect=LockError("already gone")
        ):
            store.save(record)
        assert store.load(record.client_id) == record
