from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from drivesync.core.config import (
    DEFAULT_CONFIG_PATH,
    LAST_RUN_PATH,
    RUN_HISTORY_PATH,
    AppConfig,
    load_config,
)
from drivesync.core.errors import ConfigError, DriveSyncError
from drivesync.core.logging_setup import setup_logging
from drivesync.providers.google_drive import DriveClient
from drivesync.providers.media_service import MediaServiceClient
from drivesync.sync import Reconciler, SyncStateStore
from drivesync.sync.state_store import now_iso

app = typer.Typer(add_completion=False)
console = Console()
logger = logging.getLogger("cli")

ConfigOption = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to config.yaml.")


def _load(path: Path) -> AppConfig:
    return load_config(path, env=os.environ)


def _append_run_history(summary: dict) -> None:
    RUN_HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    with RUN_HISTORY_PATH.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def _write_summary(summary: dict) -> None:
    LAST_RUN_PATH.parent.mkdir(parents=True, exist_ok=True)
    LAST_RUN_PATH.write_text(json.dumps(summary, ensure_ascii=False, indent=2), encoding="utf-8")
    _append_run_history(summary)


def _build_reconciler(cfg: AppConfig) -> tuple[Reconciler, SyncStateStore]:
    if not cfg.drive.folder_id:
        raise ConfigError("drive_folder_id_missing")

    store = SyncStateStore(cfg.database.path)
    drive = DriveClient(
        client_email=cfg.drive.client_email,
        private_key=cfg.drive.private_key,
        num_retries=cfg.drive.num_retries,
    )
    media = MediaServiceClient(
        base_url=cfg.media.base_url,
        admin_secret=cfg.media.admin_secret,
        timeout=int(cfg.media.timeout_sec),
    )
    reconciler = Reconciler(cfg, lister=drive, downloader=drive, media=media, store=store)
    return reconciler, store


async def _run_and_record(reconciler: Reconciler, run_type: str) -> dict[str, Any]:
    started = now_iso()
    try:
        stats = await reconciler.run(run_type=run_type)
    except DriveSyncError as e:
        summary = {"ok": False, "run_type": run_type, "started_at": started, "finished_at": now_iso(), "fatal_error": str(e)}
        _write_summary(summary)
        return summary
    summary = {
        "ok": True,
        "run_type": run_type,
        "started_at": started,
        "finished_at": now_iso(),
        **stats.model_dump(),
    }
    _write_summary(summary)
    return summary


@app.command("config-show")
def config_show(config_path: Path = ConfigOption):
    """Show the effective configuration (secrets masked)."""
    cfg = _load(config_path)
    data = cfg.model_dump()
    for section, key in (("drive", "private_key"), ("media", "admin_secret")):
        if data[section][key]:
            data[section][key] = "***"
    print(json.dumps(data, ensure_ascii=False, indent=2))


@app.command("config-validate")
def config_validate(
    config_path: Path = ConfigOption,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": now_iso(),
        "config_path": str(config_path),
        "checks": {
            "config_exists": config_path.exists(),
            "folder_id_configured": False,
            "client_email_configured": False,
            "private_key_looks_valid": False,
            "media_base_url_valid": False,
            "admin_secret_configured": False,
            "database_parent_ready": False,
            "log_parent_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = _load(config_path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        print(json.dumps(out, ensure_ascii=False, indent=2))
        if strict:
            raise typer.Exit(2)
        return

    checks = out["checks"]
    checks["folder_id_configured"] = bool(cfg.drive.folder_id)
    if not checks["folder_id_configured"]:
        out["errors"].append("drive_folder_id_missing")

    checks["client_email_configured"] = bool(cfg.drive.client_email)
    checks["private_key_looks_valid"] = "PRIVATE KEY" in cfg.drive.private_key
    if not checks["client_email_configured"] or not checks["private_key_looks_valid"]:
        out["errors"].append("drive_credentials_incomplete")

    checks["media_base_url_valid"] = cfg.media.base_url.startswith(("http://", "https://"))
    if not checks["media_base_url_valid"]:
        out["errors"].append(f"media_base_url_invalid: {cfg.media.base_url}")

    checks["admin_secret_configured"] = bool(cfg.media.admin_secret) and cfg.media.admin_secret != "change-me"
    if not checks["admin_secret_configured"]:
        out["warnings"].append("admin_secret_default_or_empty")

    if cfg.sync.backoff_base_ms > cfg.sync.backoff_max_ms:
        out["warnings"].append("backoff_base_exceeds_max")

    try:
        Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)
        checks["database_parent_ready"] = True
    except Exception as e:
        out["errors"].append(f"database_parent_unavailable: {e}")

    try:
        Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
        checks["log_parent_ready"] = True
    except Exception as e:
        out["errors"].append(f"log_parent_unavailable: {e}")

    out["ok"] = len(out["errors"]) == 0
    print(json.dumps(out, ensure_ascii=False, indent=2))
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command("run-once")
def run_once(
    config_path: Path = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="List and diff only; no uploads, deletions or state writes."),
    fail_on_errors: bool = typer.Option(
        False,
        "--fail-on-errors",
        help="Exit with code 2 when any item failed.",
    ),
    run_type: str = typer.Option("manual_cli", "--run-type", help="sync run_type label."),
):
    """Run one reconciliation pass and print summary JSON."""
    cfg = _load(config_path)
    setup_logging(cfg.logging.level, cfg.logging.file)
    try:
        reconciler, _store = _build_reconciler(cfg)
    except ConfigError as e:
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, indent=2))
        raise typer.Exit(2)

    if dry_run:
        try:
            plan = asyncio.run(reconciler.plan())
        except DriveSyncError as e:
            print(json.dumps({"ok": False, "dry_run": True, "fatal_error": str(e)}, ensure_ascii=False, indent=2))
            raise typer.Exit(1)
        summary = {
            "ok": True,
            "dry_run": True,
            "checked_at": now_iso(),
            "delete": len(plan.to_delete),
            "process": len(plan.to_process),
            "unchanged": plan.unchanged_count,
            "to_delete": [r.display_name or r.remote_file_id for r in plan.to_delete],
            "to_process": [f.name for f in plan.to_process],
        }
        print(json.dumps(summary, ensure_ascii=False, indent=2))
        return

    summary = asyncio.run(_run_and_record(reconciler, run_type))
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    if not summary.get("ok"):
        raise typer.Exit(1)
    if fail_on_errors and int(summary.get("failed", 0)) > 0:
        raise typer.Exit(2)


async def _watch_loop(reconciler: Reconciler, interval_sec: int, max_runs: Optional[int] = None) -> int:
    runs = 0
    logger.info("watch_started interval_sec=%s", interval_sec)
    while max_runs is None or runs < max_runs:
        try:
            summary = await _run_and_record(reconciler, "scheduled")
            if not summary.get("ok"):
                logger.warning("scheduled_sync_aborted error=%s", summary.get("fatal_error"))
        except Exception as e:
            logger.exception("scheduled_sync_failed: %s", e)
        runs += 1
        if max_runs is not None and runs >= max_runs:
            break
        await asyncio.sleep(interval_sec)
    return runs


@app.command()
def watch(
    config_path: Path = ConfigOption,
    interval: Optional[int] = typer.Option(None, "--interval", min=1, help="Seconds between runs (default: sync.poll_interval_sec)."),
    max_runs: Optional[int] = typer.Option(None, "--max-runs", min=1, hidden=True),
):
    """Run the reconciliation repeatedly until interrupted."""
    cfg = _load(config_path)
    setup_logging(cfg.logging.level, cfg.logging.file)
    interval_sec = interval or int(cfg.sync.poll_interval_sec or 0)
    if interval_sec <= 0:
        print(json.dumps({"ok": False, "error": "poll_interval_disabled"}, ensure_ascii=False, indent=2))
        raise typer.Exit(2)
    try:
        reconciler, _store = _build_reconciler(cfg)
    except ConfigError as e:
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, indent=2))
        raise typer.Exit(2)

    try:
        asyncio.run(_watch_loop(reconciler, interval_sec, max_runs=max_runs))
    except KeyboardInterrupt:
        logger.info("watch_stopped")


@app.command()
def status(config_path: Path = ConfigOption):
    """Show configuration readiness and sync state summary."""
    cfg = _load(config_path)
    store = SyncStateStore(cfg.database.path)
    runs = store.recent_runs(limit=1)
    last = runs[0] if runs else None

    table = Table(title="drive-media-sync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(config_path))
    table.add_row("drive_folder_id", cfg.drive.folder_id or "(unset)")
    table.add_row("drive_credentials", "yes" if cfg.drive.client_email and cfg.drive.private_key else "no")
    table.add_row("media_base_url", cfg.media.base_url)
    table.add_row("link_targets", "on" if cfg.sync.link_targets else "off")
    table.add_row("concurrency", str(cfg.sync.concurrency))
    poll_interval = int(cfg.sync.poll_interval_sec or 0)
    table.add_row("watch_interval_sec", str(poll_interval) if poll_interval > 0 else "off")
    table.add_row("tracked_files", str(store.count()))
    table.add_row("queued_asset_cleanups", str(store.cleanup_queue_size()))
    if last:
        table.add_row("last_run", f"#{last['id']} {last['status']} finished={last.get('finished_at') or '-'}")
    else:
        table.add_row("last_run", "(none)")
    table.add_row("db", cfg.database.path)
    table.add_row("log", cfg.logging.file)
    console.print(table)


@app.command()
def history(
    config_path: Path = ConfigOption,
    limit: int = typer.Option(20, "--limit", min=1, max=500),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
):
    """List recent reconciliation runs."""
    cfg = _load(config_path)
    runs = SyncStateStore(cfg.database.path).recent_runs(limit=limit)
    if json_output:
        print(json.dumps(runs, ensure_ascii=False, indent=2))
        return

    table = Table(title="recent runs")
    for col in ("id", "type", "status", "started", "finished", "added", "updated", "deleted", "failed"):
        table.add_column(col)
    for r in runs:
        s = r.get("summary") or {}
        table.add_row(
            str(r["id"]),
            str(r.get("run_type") or ""),
            str(r.get("status") or ""),
            str(r.get("started_at") or ""),
            str(r.get("finished_at") or "-"),
            str(s.get("added", "-")),
            str(s.get("updated", "-")),
            str(s.get("deleted", "-")),
            str(s.get("failed", "-")),
        )
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
