import json
import logging
import threading
from types import SimpleNamespace

import pandas as pd
import pytest

from contacts_dedupe import merge_contacts, scan_contacts
from contacts_dedupe.common import (
    BackupError,
    Consolidator,
    ContactRecord,
    ContactScanner,
    CsvContactStore,
    Email,
    InMemoryContactStore,
    InsufficientSelection,
    JsonBackupService,
    PartialCommitError,
    Phone,
    PostalAddress,
    PrimaryNotInGroup,
    StoreReadError,
    StoreWriteError,
    find_duplicate_groups,
    load_config,
)
from contacts_dedupe.config_loader import DEFAULT_LOG_FORMAT, DedupeConfig
from contacts_dedupe.logging_utils import LOG_LEVEL_ENV, configure_logging


def _record(contact_id, given="", family="", phones=(), emails=(), **extra):
    return ContactRecord(
        contact_id=contact_id,
        given_name=given,
        family_name=family,
        phones=[Phone(value=value) for value in phones],
        emails=[Email(value=value) for value in emails],
        **extra,
    )


def _address_book():
    return [
        _record("p", "Pat", "Doe", phones=["111"], job_title="Lead"),
        _record("s", "Pat", "", phones=["222", "111"], emails=["s@x.com"], organization="Acme"),
        _record("x", "Other", "Person", phones=["999"]),
    ]


class RecordingStore(InMemoryContactStore):
    def __init__(self, records, events):
        super().__init__(records)
        self.events = events

    def commit(self, update, deletes):
        self.events.append("commit")
        super().commit(update, deletes)


class RecordingBackup:
    def __init__(self, events, error=None):
        self.events = events
        self.error = error
        self.saved = []

    def backup(self, records):
        self.events.append("backup")
        if self.error is not None:
            raise self.error
        self.saved.extend(records)


class RejectingStore(InMemoryContactStore):
    def __init__(self, records, error):
        super().__init__(records)
        self.error = error

    def commit(self, update, deletes):
        raise self.error


class UpdateOnlyStore(InMemoryContactStore):
    def commit(self, update, deletes):
        super().commit(update, [])


def test_consolidate_picks_most_complete_primary_and_deletes_rest():
    store = InMemoryContactStore(_address_book())
    (group,) = find_duplicate_groups(store.fetch_all())
    result = Consolidator(store).consolidate(group)

    assert result.primary_id == "s"
    assert result.deleted_ids == ("p",)
    remaining = {record.contact_id: record for record in store.fetch_all()}
    assert set(remaining) == {"s", "x"}
    merged = remaining["s"]
    assert [phone.value for phone in merged.phones] == ["222", "111"]
    assert merged.job_title == "Lead"
    assert merged.organization == "Acme"
    assert merged.given_name == "Pat"


def test_consolidate_with_explicit_primary():
    store = InMemoryContactStore(_address_book())
    group = store.fetch_all()[:2]
    result = Consolidator(store).consolidate(group, primary_id="p")
    merged = result.record
    assert result.primary_id == "p"
    assert merged.family_name == "Doe"
    assert merged.organization == "Acme"
    assert [email.value for email in merged.emails] == ["s@x.com"]
    assert [record.contact_id for record in store.fetch_all()] == ["p", "x"]


def test_consolidate_rejects_bad_selection():
    store = InMemoryContactStore(_address_book())
    consolidator = Consolidator(store)
    records = store.fetch_all()
    with pytest.raises(InsufficientSelection):
        consolidator.consolidate(records[:1])
    with pytest.raises(InsufficientSelection):
        consolidator.consolidate([records[0], records[0]])
    with pytest.raises(PrimaryNotInGroup):
        consolidator.consolidate(records[:2], primary_id="x")
    assert store.fetch_all() == records


def test_backup_runs_before_commit_when_enabled():
    events = []
    store = RecordingStore(_address_book(), events)
    backup = RecordingBackup(events)
    result = Consolidator(store, backup=backup, auto_backup=True).consolidate(store.fetch_all()[:2])
    assert events == ["backup", "commit"]
    assert result.backed_up is True
    assert {record.contact_id for record in backup.saved} == {"p", "s"}


def test_backup_skipped_when_disabled():
    events = []
    store = RecordingStore(_address_book(), events)
    Consolidator(store, backup=RecordingBackup(events)).consolidate(store.fetch_all()[:2])
    assert events == ["commit"]


@pytest.mark.parametrize("error", [BackupError("disk full"), RuntimeError("boom")])
def test_backup_failure_does_not_block_merge(error, caplog):
    events = []
    store = RecordingStore(_address_book(), events)
    consolidator = Consolidator(store, backup=RecordingBackup(events, error=error), auto_backup=True)
    with caplog.at_level(logging.WARNING):
        result = consolidator.consolidate(store.fetch_all()[:2])
    assert events == ["backup", "commit"]
    assert result.backed_up is False
    assert len(store.fetch_all()) == 2
    assert "continuing" in caplog.text


def test_store_failure_propagates_and_leaves_records():
    records = _address_book()
    store = RejectingStore(records, StoreWriteError("batch rejected"))
    with pytest.raises(StoreWriteError, match="batch rejected"):
        Consolidator(store).consolidate(records[:2])
    assert store.fetch_all() == records


def test_unexpected_store_failure_is_wrapped():
    records = _address_book()
    store = RejectingStore(records, RuntimeError("connection lost"))
    with pytest.raises(StoreWriteError, match="connection lost"):
        Consolidator(store).consolidate(records[:2])


def test_commit_fails_as_a_unit_when_a_record_vanished():
    records = _address_book()
    store = InMemoryContactStore(records)
    stale_group = list(records[:2])
    store.commit(None, ["p"])
    with pytest.raises(StoreWriteError, match="no longer exist"):
        Consolidator(store).consolidate(stale_group, primary_id="s")
    assert [record.contact_id for record in store.fetch_all()] == ["s", "x"]
    assert store.fetch_all()[0] == records[1]


def test_verify_commit_reports_partial_application():
    store = UpdateOnlyStore(_address_book())
    with pytest.raises(PartialCommitError) as excinfo:
        Consolidator(store, verify_commit=True).consolidate(store.fetch_all()[:2])
    assert excinfo.value.lingering_ids == ["p"]
    assert excinfo.value.missing_update is False
    assert isinstance(excinfo.value, StoreWriteError)


def test_merge_selected_and_delete_records():
    store = InMemoryContactStore(_address_book())
    consolidator = Consolidator(store)
    snapshot = store.fetch_all()
    with pytest.raises(InsufficientSelection):
        consolidator.merge_selected(snapshot, {"p", "missing"})
    result = consolidator.merge_selected(snapshot, {"p", "x"})
    assert result.primary_id == "p"
    assert result.deleted_ids == ("x",)

    with pytest.raises(InsufficientSelection):
        consolidator.delete_records([])
    assert consolidator.delete_records(store.fetch_all()[:1]) == ["p"]
    assert [record.contact_id for record in store.fetch_all()] == ["s"]


def test_csv_store_round_trip(tmp_path):
    record = ContactRecord(
        contact_id="c1",
        given_name="Ann",
        family_name="Lee",
        phones=[Phone(value="(555) 0100", label="mobile"), Phone(value="555-0199")],
        emails=[Email(value="ann@x.com", label="work")],
        organization="Acme",
        job_title="CTO",
        addresses=[PostalAddress(street="1 Main St", city="Boston", state="MA", label="home")],
        image_data=b"\x89PNG\x00\x01",
    )
    store = CsvContactStore(tmp_path / "contacts.csv")
    store.save_all([record, _record("c2", "Bob")])
    loaded = store.fetch_all()
    assert loaded[0] == record
    assert loaded[1] == _record("c2", "Bob")


def test_csv_store_keeps_separator_characters_in_values(tmp_path):
    record = ContactRecord(
        contact_id="c1",
        phones=[Phone(value="555|0100", label="work::desk")],
        emails=[Email(value="ann|work@x.com"), Email(value="b::c@x.com", label="a|b")],
    )
    path = tmp_path / "contacts.csv"
    store = CsvContactStore(path)
    store.save_all([record, _record("c2", emails=["work@x.com"])])
    loaded = store.fetch_all()[0]
    assert loaded == record
    assert loaded.emails[0] == Email(value="ann|work@x.com")

    store.commit(loaded, [])
    assert store.fetch_all()[0] == record
    assert find_duplicate_groups(store.fetch_all()) == []


def test_csv_store_rejects_non_list_contact_methods(tmp_path):
    path = tmp_path / "contacts.csv"
    path.write_text('"contact_id","emails_json"\n"1","{""value"": ""a@x.com""}"\n', encoding="utf-8")
    with pytest.raises(StoreReadError):
        CsvContactStore(path).fetch_all()


def test_csv_store_commit_rejects_unknown_ids_without_writing(tmp_path):
    path = tmp_path / "contacts.csv"
    store = CsvContactStore(path)
    store.save_all(_address_book())
    before = path.read_text(encoding="utf-8")
    with pytest.raises(StoreWriteError):
        store.commit(_record("p", "Pat"), ["ghost"])
    assert path.read_text(encoding="utf-8") == before

    store.commit(_record("p", "Patricia"), ["s"])
    assert [(r.contact_id, r.given_name) for r in store.fetch_all()] == [
        ("p", "Patricia"),
        ("x", "Other"),
    ]


def test_csv_store_read_errors(tmp_path):
    with pytest.raises(StoreReadError):
        CsvContactStore(tmp_path / "missing.csv").fetch_all()

    bad = tmp_path / "bad.csv"
    bad.write_text('"contact_id","addresses_json"\n"1","{not json"\n', encoding="utf-8")
    with pytest.raises(StoreReadError):
        CsvContactStore(bad).fetch_all()

    no_id = tmp_path / "no_id.csv"
    no_id.write_text('"given_name"\n"Ann"\n', encoding="utf-8")
    with pytest.raises(StoreReadError):
        CsvContactStore(no_id).fetch_all()


def test_json_backup_service(tmp_path):
    target = JsonBackupService(tmp_path / "backups").backup(
        [_record("1", "Ann", image_data=b"img")]
    )
    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["count"] == 1
    assert payload["contacts"][0]["contact_id"] == "1"
    assert payload["contacts"][0]["image_base64"] == "aW1n"

    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    with pytest.raises(BackupError):
        JsonBackupService(blocker).backup([_record("1")])


class FlakyStore:
    def __init__(self, records):
        self.records = records
        self.fail = False

    def fetch_all(self):
        if self.fail:
            raise OSError("store offline")
        return list(self.records)

    def commit(self, update, deletes):
        raise NotImplementedError


def test_scanner_publishes_result_and_keeps_it_on_failure():
    store = FlakyStore(_address_book() + [_record("blank", organization="Acme")])
    with ContactScanner(store) as scanner:
        assert scanner.latest is None
        result = scanner.scan_async().result(timeout=5)
        assert scanner.latest is result
        assert result.total_records == 3
        assert [group.contact_ids for group in result.groups] == [["s", "p"]]
        assert result.duplicate_record_count == 2
        assert [record.contact_id for record in result.incomplete] == []

        store.fail = True
        with pytest.raises(StoreReadError):
            scanner.scan()
        assert scanner.latest is result


def test_scanner_keeps_blank_records_when_configured():
    store = FlakyStore([_record("blank", organization="Acme"), _record("n", given="Ann")])
    result = ContactScanner(store, DedupeConfig(skip_blank_records=False)).scan()
    assert result.total_records == 2
    assert [record.contact_id for record in result.incomplete] == ["blank", "n"]


class GatedStore:
    def __init__(self, first, second):
        self.first = first
        self.second = second
        self.calls = 0
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_all(self):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            self.release.wait(5)
            return list(self.first)
        return list(self.second)

    def commit(self, update, deletes):
        raise NotImplementedError


def test_newer_scan_wins_over_slower_older_scan():
    store = GatedStore(_address_book(), _address_book()[:1])
    with ContactScanner(store) as scanner:
        pending = scanner.scan_async()
        assert store.entered.wait(5)
        fresh = scanner.scan()
        store.release.set()
        stale = pending.result(timeout=5)
        assert stale.total_records == 3
        assert fresh.total_records == 1
        assert scanner.latest is fresh


def test_concurrent_scan_async_calls_share_one_executor():
    scanner = ContactScanner(InMemoryContactStore(_address_book()))
    start = threading.Barrier(8)
    executors = []

    def submit():
        start.wait(5)
        executors.append(scanner._ensure_executor())
        scanner.scan_async().result(timeout=5)

    threads = [threading.Thread(target=submit) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)
    assert len(executors) == 8
    assert len({id(executor) for executor in executors}) == 1
    assert scanner.latest.total_records == 3
    scanner.close()
    assert scanner._executor is None


def test_load_config_precedence(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "store:",
                "  contacts_csv: book.csv",
                "dedupe:",
                "  transitive_grouping: true",
                "  short_name_length: 4",
                "backup:",
                "  auto_backup: true",
                f'  dir: "{tmp_path / "bk"}"',
                "logging:",
                "  level: info",
            ]
        ),
        encoding="utf-8",
    )
    config = load_config(SimpleNamespace(config=str(config_path), out_dir=str(tmp_path)))
    assert config.store.contacts_csv == "book.csv"
    assert config.dedupe.transitive_grouping is True
    assert config.dedupe.short_name_length == 4
    assert config.backup.auto_backup is True
    assert config.backup.dir == tmp_path / "bk"
    assert config.logging.level == "INFO"
    assert config.outputs.dir == tmp_path

    overridden = load_config(
        SimpleNamespace(
            config=str(config_path),
            contacts_csv="other.csv",
            transitive=False,
            auto_backup=False,
            log_level="debug",
        )
    )
    assert overridden.store.contacts_csv == "other.csv"
    assert overridden.dedupe.transitive_grouping is False
    assert overridden.backup.auto_backup is False
    assert overridden.logging.level == "DEBUG"


def test_configure_logging_precedence(tmp_path, monkeypatch):
    root = logging.getLogger()
    previous = root.level
    config = load_config(SimpleNamespace(out_dir=str(tmp_path), log_level="info"))
    assert config.logging.format == DEFAULT_LOG_FORMAT
    try:
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        assert configure_logging(config) == logging.INFO
        assert configure_logging(config, level_override="error") == logging.ERROR
        assert configure_logging(config, level_override="not-a-level") == logging.WARNING
        monkeypatch.setenv(LOG_LEVEL_ENV, "debug")
        assert configure_logging(config, level_override="error") == logging.DEBUG
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(previous)


def _write_book(tmp_path):
    path = tmp_path / "contacts.csv"
    CsvContactStore(path).save_all(
        [
            _record("a", "John", "Smith", phones=["555-0100"]),
            _record("b", "J.", "Smith", phones=["(555) 0100"], emails=["js@x.com"]),
            _record("c", "Robert", "Lee", emails=["rlee@x.com"]),
            _record("d", "Rob", "Lee", emails=["rlee@x.com"], organization="Acme"),
            _record("e", "Mike", "Brown", phones=["111"]),
            _record("f", "Mike", "Brown", phones=["222"]),
        ]
    )
    return path


def test_scan_cli_writes_reports(tmp_path):
    book = _write_book(tmp_path)
    out_dir = tmp_path / "out"
    assert scan_contacts.main(["--contacts-csv", str(book), "--out-dir", str(out_dir)]) == 0

    groups = pd.read_csv(out_dir / "duplicate_groups.csv", dtype=str, keep_default_na=False)
    assert sorted(set(groups["contact_id"])) == ["a", "b", "c", "d"]
    assert set(groups["group"]) == {"1", "2"}
    primaries = groups[groups["is_primary"] == "True"]
    assert sorted(primaries["contact_id"]) == ["b", "d"]

    incomplete = pd.read_csv(out_dir / "incomplete_contacts.csv", dtype=str, keep_default_na=False)
    assert list(incomplete["contact_id"]) == ["c", "d"]


def test_scan_cli_reports_missing_store(tmp_path):
    assert scan_contacts.main(["--contacts-csv", str(tmp_path / "nope.csv"), "--out-dir", str(tmp_path)]) == 1


def test_merge_cli_dry_run_leaves_book_untouched(tmp_path):
    book = _write_book(tmp_path)
    before = book.read_text(encoding="utf-8")
    args = ["--contacts-csv", str(book), "--out-dir", str(tmp_path), "--dry-run"]
    assert merge_contacts.main(args) == 0
    assert book.read_text(encoding="utf-8") == before
    preview = pd.read_csv(tmp_path / "merge_preview.csv", dtype=str, keep_default_na=False)
    assert len(preview) == 2


def test_merge_cli_merges_every_group_with_backup(tmp_path, capsys):
    book = _write_book(tmp_path)
    backups = tmp_path / "backups"
    args = [
        "--contacts-csv",
        str(book),
        "--out-dir",
        str(tmp_path),
        "--auto-backup",
        "--backup-dir",
        str(backups),
        "--verify-commit",
    ]
    assert merge_contacts.main(args) == 0
    remaining = {record.contact_id: record for record in CsvContactStore(book).fetch_all()}
    assert set(remaining) == {"b", "d", "e", "f"}
    assert [phone.value for phone in remaining["b"].phones] == ["(555) 0100"]
    assert len(list(backups.glob("contacts_backup_*.json"))) == 2
    assert "'groups_remaining': 0" in capsys.readouterr().out


def test_merge_cli_single_group_with_primary(tmp_path):
    book = _write_book(tmp_path)
    args = ["--contacts-csv", str(book), "--out-dir", str(tmp_path), "--group", "2", "--primary", "c"]
    assert merge_contacts.main(args) == 0
    remaining = {record.contact_id: record for record in CsvContactStore(book).fetch_all()}
    assert set(remaining) == {"a", "b", "c", "e", "f"}
    assert remaining["c"].organization == "Acme"

    assert merge_contacts.main(["--contacts-csv", str(book), "--out-dir", str(tmp_path), "--group", "9"]) == 1
    with pytest.raises(SystemExit):
        merge_contacts.main(["--contacts-csv", str(book), "--primary", "c"])


if __name__ == "__main__":
    pytest.main(["-q"])
