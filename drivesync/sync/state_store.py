import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .db import get_conn, init_db
from .models import SyncRecord

logger = logging.getLogger("state")

RECORD_FIELDS = (
    "display_name",
    "remote_checksum",
    "local_asset_id",
    "target_type",
    "target_id",
    "sort_order",
    "last_synced_at",
)


def now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SyncStateStore:
    """sqlite-backed sync state, cleanup queue and run history.

    Every call opens its own connection, so the store can be used from
    worker threads concurrently as long as callers touch distinct keys.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def _db(self):
        return get_conn(self.db_path)

    # -- sync records -------------------------------------------------------

    def find_all(self) -> List[SyncRecord]:
        conn = self._db()
        rows = conn.execute("SELECT * FROM drive_sync_state ORDER BY id").fetchall()
        conn.close()
        return [self._to_record(r) for r in rows]

    def get(self, remote_file_id: str) -> Optional[SyncRecord]:
        conn = self._db()
        row = conn.execute(
            "SELECT * FROM drive_sync_state WHERE remote_file_id=?", (remote_file_id,)
        ).fetchone()
        conn.close()
        return self._to_record(row) if row else None

    def upsert(self, remote_file_id: str, fields: Dict[str, Any]) -> SyncRecord:
        unknown = set(fields) - set(RECORD_FIELDS)
        if unknown:
            raise ValueError(f"unknown_sync_record_fields: {sorted(unknown)}")

        values = dict(fields)
        values.setdefault("last_synced_at", now_iso())
        columns = list(values)
        placeholders = ",".join("?" for _ in columns)
        updates = ", ".join(f"{c}=excluded.{c}" for c in columns)

        conn = self._db()
        conn.execute(
            f"""
            INSERT INTO drive_sync_state(remote_file_id,{",".join(columns)})
            VALUES (?,{placeholders})
            ON CONFLICT(remote_file_id) DO UPDATE SET {updates}
            """,
            (remote_file_id, *[values[c] for c in columns]),
        )
        conn.commit()
        row = conn.execute(
            "SELECT * FROM drive_sync_state WHERE remote_file_id=?", (remote_file_id,)
        ).fetchone()
        conn.close()
        return self._to_record(row)

    def delete(self, remote_file_id: str) -> bool:
        conn = self._db()
        cur = conn.execute("DELETE FROM drive_sync_state WHERE remote_file_id=?", (remote_file_id,))
        deleted = cur.rowcount > 0
        conn.commit()
        conn.close()
        return deleted

    def count(self) -> int:
        conn = self._db()
        n = conn.execute("SELECT COUNT(*) FROM drive_sync_state").fetchone()[0]
        conn.close()
        return int(n)

    @staticmethod
    def _to_record(row) -> SyncRecord:
        data = dict(row)
        return SyncRecord(
            remote_file_id=data["remote_file_id"],
            display_name=data.get("display_name") or "",
            remote_checksum=data.get("remote_checksum"),
            local_asset_id=data.get("local_asset_id"),
            last_synced_at=data.get("last_synced_at"),
            target_type=data.get("target_type"),
            target_id=data.get("target_id"),
            sort_order=data.get("sort_order"),
        )

    # -- asset cleanup queue -------------------------------------------------

    def enqueue_asset_cleanup(self, asset_id: str, last_error: str):
        conn = self._db()
        conn.execute(
            """
            INSERT INTO asset_cleanup_queue(asset_id,attempt_count,last_error)
            VALUES (?,0,?)
            ON CONFLICT(asset_id) DO UPDATE SET last_error=excluded.last_error, updated_at=CURRENT_TIMESTAMP
            """,
            (asset_id, last_error),
        )
        conn.commit()
        conn.close()

    def pending_asset_cleanups(self, limit: int = 100) -> List[dict]:
        conn = self._db()
        rows = conn.execute(
            "SELECT * FROM asset_cleanup_queue ORDER BY created_at, asset_id LIMIT ?",
            (limit,),
        ).fetchall()
        conn.close()
        return [dict(r) for r in rows]

    def asset_cleanup_done(self, asset_id: str):
        conn = self._db()
        conn.execute("DELETE FROM asset_cleanup_queue WHERE asset_id=?", (asset_id,))
        conn.commit()
        conn.close()

    def asset_cleanup_failed(self, row: dict, error: str, max_attempts: int) -> bool:
        """Record a failed cleanup attempt. Returns True when the row was discarded."""
        attempt = int(row.get("attempt_count", 0)) + 1
        conn = self._db()
        if attempt >= max_attempts:
            conn.execute("DELETE FROM asset_cleanup_queue WHERE asset_id=?", (row["asset_id"],))
            conn.commit()
            conn.close()
            logger.error(
                "asset_cleanup_discarded %s",
                json.dumps({"asset_id": row["asset_id"], "attempts": attempt, "error": error}, ensure_ascii=False),
            )
            return True

        conn.execute(
            """
            UPDATE asset_cleanup_queue
               SET attempt_count=?, last_error=?, updated_at=CURRENT_TIMESTAMP
             WHERE asset_id=?
            """,
            (attempt, error, row["asset_id"]),
        )
        conn.commit()
        conn.close()
        return False

    def cleanup_queue_size(self) -> int:
        conn = self._db()
        n = conn.execute("SELECT COUNT(*) FROM asset_cleanup_queue").fetchone()[0]
        conn.close()
        return int(n)

    # -- run history ----------------------------------------------------------

    def insert_sync_run(self, run_type: str) -> int:
        conn = self._db()
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO sync_runs(run_type,status,started_at,summary_json) VALUES (?,?,?,?)",
            (run_type, "running", now_iso(), "{}"),
        )
        rid = cur.lastrowid
        conn.commit()
        conn.close()
        return rid

    def finish_sync_run(self, run_id: int, status: str, summary: dict):
        conn = self._db()
        conn.execute(
            "UPDATE sync_runs SET status=?, finished_at=?, summary_json=? WHERE id=?",
            (status, now_iso(), json.dumps(summary, ensure_ascii=False), run_id),
        )
        conn.commit()
        conn.close()

    def recent_runs(self, limit: int = 20) -> List[dict]:
        conn = self._db()
        rows = conn.execute("SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        conn.close()
        out = []
        for r in rows:
            item = dict(r)
            try:
                item["summary"] = json.loads(item.pop("summary_json") or "{}")
            except ValueError:
                item["summary"] = {}
            out.append(item)
        return out
