from __future__ import annotations

from collections.abc import Iterable

from .models import DiffResult, RemoteFile, SyncRecord


def diff_listing(remote_files: Iterable[RemoteFile], sync_records: Iterable[SyncRecord]) -> DiffResult:
    """Split a listing snapshot against stored sync state.

    A file is reprocessed only when it has no record or its checksum differs
    from the one stored at its last successful sync. Renames alone are not a
    change. Records whose file is gone from the listing are returned for
    deletion.
    """

    remote = list(remote_files)
    records = list(sync_records)
    by_id = {r.remote_file_id: r for r in records}
    remote_ids = {f.id for f in remote}

    to_delete = [r for r in records if r.remote_file_id not in remote_ids]
    to_process = []
    for f in remote:
        existing = by_id.get(f.id)
        if existing is None or existing.remote_checksum != f.checksum:
            to_process.append(f)

    return DiffResult(
        to_delete=to_delete,
        to_process=to_process,
        unchanged_count=len(remote) - len(to_process),
    )
