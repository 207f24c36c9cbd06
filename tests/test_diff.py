from drivesync.sync.diff import diff_listing
from drivesync.sync.models import RemoteFile, SyncRecord


def _file(fid: str, checksum: str | None = "c", name: str | None = None) -> RemoteFile:
    return RemoteFile(id=fid, name=name or f"{fid}.jpg", mime_type="image/jpeg", checksum=checksum)


def _record(fid: str, checksum: str | None = "c", asset: str | None = "a") -> SyncRecord:
    return SyncRecord(remote_file_id=fid, display_name=f"{fid}.jpg", remote_checksum=checksum, local_asset_id=asset)


def test_same_checksum_is_neither_processed_nor_deleted():
    result = diff_listing([_file("f1", "abc")], [_record("f1", "abc")])

    assert result.to_process == []
    assert result.to_delete == []
    assert result.unchanged_count == 1


def test_new_and_changed_files_are_processed():
    remote = [_file("new"), _file("changed", "v2"), _file("same", "v1")]
    records = [_record("changed", "v1"), _record("same", "v1")]

    result = diff_listing(remote, records)

    assert [f.id for f in result.to_process] == ["new", "changed"]
    assert result.unchanged_count == 1


def test_records_without_remote_file_are_deleted():
    result = diff_listing([_file("f1")], [_record("f1"), _record("gone")])

    assert [r.remote_file_id for r in result.to_delete] == ["gone"]


def test_rename_alone_does_not_trigger_reprocessing():
    record = _record("f1", "abc")
    result = diff_listing([_file("f1", "abc", name="renamed.jpg")], [record])

    assert result.to_process == []
    assert result.unchanged_count == 1


def test_empty_listing_deletes_everything():
    result = diff_listing([], [_record("f1"), _record("f2")])

    assert len(result.to_delete) == 2
    assert result.to_process == []
    assert result.unchanged_count == 0


def test_partitions_are_disjoint_and_cover_all_ids():
    remote = [_file("a", "1"), _file("b", "2"), _file("c", "3"), _file("d", None)]
    records = [_record("b", "2"), _record("c", "old"), _record("e", "5"), _record("d", None)]

    result = diff_listing(remote, records)

    processed = {f.id for f in result.to_process}
    deleted = {r.remote_file_id for r in result.to_delete}
    unchanged = {f.id for f in remote} - processed

    assert processed == {"a", "c"}
    assert deleted == {"e"}
    assert unchanged == {"b", "d"}
    assert processed.isdisjoint(deleted) and processed.isdisjoint(unchanged) and deleted.isdisjoint(unchanged)
    assert processed | deleted | unchanged == {"a", "b", "c", "d", "e"}
    assert result.unchanged_count == len(unchanged)
