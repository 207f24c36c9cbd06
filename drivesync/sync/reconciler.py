import asyncio
import hashlib
import logging
from typing import Dict, List, Optional

from drivesync.core.config import AppConfig
from drivesync.core.retry import RetryPolicy, Sleeper

from .diff import diff_listing
from .listing import RemoteListingFetcher
from .models import DiffResult, RemoteFile, SyncRecord, SyncStats
from .state_store import SyncStateStore
from .targets import CatalogLinker
from .transfer import AssetUploader, ContentFetcher

logger = logging.getLogger("sync")


class Reconciler:
    """One reconciliation pass of a Drive folder against the media service.

    Collaborators:
      lister      - ``iter_files(folder_id, mime_prefix, page_size=...)``
      downloader  - ``download(file_id) -> bytes``
      media       - ``upload_asset``, ``delete_asset`` (and the catalog calls
                    when linking is enabled)
      store       - ``SyncStateStore``

    The pass is safe to re-run: an item that fails keeps a stale (or no)
    record and is selected again by the next diff.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        lister,
        downloader,
        media,
        store: SyncStateStore,
        linker: Optional[CatalogLinker] = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.cfg = cfg
        self.media = media
        self.store = store
        policy = RetryPolicy.from_config(cfg.sync)
        self.listing = RemoteListingFetcher(
            lister,
            cfg.drive.folder_id,
            mime_prefix=cfg.drive.mime_prefix,
            page_size=cfg.drive.page_size,
        )
        self.fetcher = ContentFetcher(downloader, policy, sleep=sleep)
        self.uploader = AssetUploader(media, policy, sleep=sleep)
        if linker is None and cfg.sync.link_targets:
            linker = CatalogLinker(media, max_attempts=cfg.sync.link_max_attempts)
        self.linker = linker

    async def plan(self) -> DiffResult:
        remote_files = await self.listing.fetch_all()
        records = await asyncio.to_thread(self.store.find_all)
        return diff_listing(remote_files, records)

    async def run(self, run_type: str = "manual") -> SyncStats:
        run_id = await asyncio.to_thread(self.store.insert_sync_run, run_type)
        stats = SyncStats()
        logger.info("sync_started run_id=%s run_type=%s folder=%s", run_id, run_type, self.cfg.drive.folder_id)

        try:
            remote_files = await self.listing.fetch_all()
            records = await asyncio.to_thread(self.store.find_all)
            logger.info("sync_state_loaded tracked=%s", len(records))
            if self.linker is not None:
                await self.linker.load()
        except Exception as e:
            await asyncio.to_thread(
                self.store.finish_sync_run, run_id, "failed", {**stats.model_dump(), "fatal_error": str(e)}
            )
            logger.error("sync_aborted run_id=%s error=%s", run_id, e)
            raise

        plan = diff_listing(remote_files, records)
        stats.unchanged = plan.unchanged_count
        logger.info(
            "sync_plan delete=%s process=%s unchanged=%s",
            len(plan.to_delete),
            len(plan.to_process),
            plan.unchanged_count,
        )

        await self._delete_phase(plan.to_delete, stats)
        await self._cleanup_phase()
        existing = {r.remote_file_id: r for r in records}
        await self._process_phase(plan.to_process, existing, stats)

        status = "partial" if stats.failed else "success"
        await asyncio.to_thread(self.store.finish_sync_run, run_id, status, stats.model_dump())
        logger.info("sync_complete run_id=%s status=%s %s", run_id, status, stats.summary_line())
        return stats

    # -- deletion ---------------------------------------------------------------

    async def _delete_phase(self, to_delete: List[SyncRecord], stats: SyncStats) -> None:
        if not to_delete:
            return
        logger.info("delete_phase_started count=%s", len(to_delete))
        for record in to_delete:
            try:
                if record.local_asset_id:
                    gone = await asyncio.to_thread(self.media.delete_asset, record.local_asset_id)
                    if gone is False:
                        logger.info("asset_already_gone asset_id=%s", record.local_asset_id)
                await asyncio.to_thread(self.store.delete, record.remote_file_id)
                stats.deleted += 1
                logger.info("deleted name=%s id=%s", record.display_name, record.remote_file_id)
            except Exception as e:
                # The record stays so the next pass retries the asset deletion.
                stats.failed += 1
                logger.error(
                    "delete_failed name=%s id=%s asset_id=%s error=%s",
                    record.display_name,
                    record.remote_file_id,
                    record.local_asset_id,
                    e,
                )

    async def _cleanup_phase(self) -> None:
        rows = await asyncio.to_thread(self.store.pending_asset_cleanups)
        if not rows:
            return
        logger.info("asset_cleanup_started queued=%s", len(rows))
        for row in rows:
            try:
                await asyncio.to_thread(self.media.delete_asset, row["asset_id"])
                await asyncio.to_thread(self.store.asset_cleanup_done, row["asset_id"])
                logger.info("asset_cleanup_done asset_id=%s", row["asset_id"])
            except Exception as e:
                logger.warning("asset_cleanup_failed asset_id=%s error=%s", row["asset_id"], e)
                try:
                    await asyncio.to_thread(
                        self.store.asset_cleanup_failed, row, str(e), self.cfg.sync.cleanup_max_attempts
                    )
                except Exception as qe:
                    logger.error("asset_cleanup_update_failed asset_id=%s error=%s", row["asset_id"], qe)

    async def _discard_asset(self, asset_id: str, reason: str) -> None:
        """Best-effort deletion; failures go to the cleanup queue."""
        try:
            await asyncio.to_thread(self.media.delete_asset, asset_id)
        except Exception as e:
            logger.warning("asset_delete_deferred asset_id=%s reason=%s error=%s", asset_id, reason, e)
            try:
                await asyncio.to_thread(self.store.enqueue_asset_cleanup, asset_id, str(e))
            except Exception as qe:
                logger.error("asset_cleanup_enqueue_failed asset_id=%s error=%s", asset_id, qe)

    # -- processing -------------------------------------------------------------

    async def _process_phase(
        self,
        to_process: List[RemoteFile],
        existing: Dict[str, SyncRecord],
        stats: SyncStats,
    ) -> None:
        if not to_process:
            return
        total = len(to_process)
        logger.info("process_phase_started count=%s concurrency=%s", total, self.cfg.sync.concurrency)
        limit = asyncio.Semaphore(self.cfg.sync.concurrency)

        async def bounded(idx: int, remote_file: RemoteFile):
            async with limit:
                await self._process_item(idx, total, remote_file, existing.get(remote_file.id), stats)

        await asyncio.gather(*(bounded(i, f) for i, f in enumerate(to_process, start=1)))

    async def _process_item(
        self,
        idx: int,
        total: int,
        remote_file: RemoteFile,
        previous: Optional[SyncRecord],
        stats: SyncStats,
    ) -> None:
        prefix = f"[{idx}/{total}]"
        uploaded_id: Optional[str] = None
        stored = False
        try:
            target = None
            if self.linker is not None:
                target = self.linker.match(remote_file.name)
                if target is None:
                    stats.skipped += 1
                    logger.info("%s SKIP name=%s reason=no_catalog_match", prefix, remote_file.name)
                    return

            action = "UPDATE" if previous else "ADD"
            dest = f" target={target.target_type}:{target.target_id}" if target else ""
            logger.info("%s %s name=%s id=%s%s", prefix, action, remote_file.name, remote_file.id, dest)

            data = await self.fetcher.fetch(remote_file.id, remote_file.name)
            if data is None:
                stats.failed += 1
                logger.error("%s download_failed name=%s id=%s", prefix, remote_file.name, remote_file.id)
                return

            digest = hashlib.sha256(data).hexdigest()
            mime_type = remote_file.mime_type or self.cfg.sync.default_mime_type
            uploaded_id = await self.uploader.upload(data, remote_file.name, mime_type)
            if uploaded_id is None:
                stats.failed += 1
                logger.error("%s upload_failed name=%s id=%s", prefix, remote_file.name, remote_file.id)
                return

            if target is not None and not await self.linker.link(target, uploaded_id):
                stats.failed += 1
                logger.error("%s link_failed name=%s asset_id=%s", prefix, remote_file.name, uploaded_id)
                await self._discard_asset(uploaded_id, "link_failed")
                return

            fields = {
                "display_name": remote_file.name,
                "remote_checksum": remote_file.checksum,
                "local_asset_id": uploaded_id,
            }
            if target is not None:
                fields.update(
                    target_type=target.target_type,
                    target_id=target.target_id,
                    sort_order=target.sort_order,
                )
            await asyncio.to_thread(self.store.upsert, remote_file.id, fields)
            stored = True

            if previous:
                stats.updated += 1
                if previous.local_asset_id and previous.local_asset_id != uploaded_id:
                    await self._discard_asset(previous.local_asset_id, "superseded")
            else:
                stats.added += 1

            logger.info("%s done asset_id=%s sha256=%s", prefix, uploaded_id, digest[:8])
        except Exception as e:
            stats.failed += 1
            logger.error(
                "%s item_failed name=%s id=%s error=%s",
                prefix,
                remote_file.name,
                remote_file.id,
                e,
            )
            if uploaded_id and not stored:
                await self._discard_asset(uploaded_id, "state_write_failed")
