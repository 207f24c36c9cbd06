"""Download from Drive and upload to the media service with bounded retries.

Both sides share one ``RetryPolicy``. Exhausted or permanent failures are
returned as ``None`` so the reconciler can count them per item instead of
aborting the run.
"""

import asyncio
import logging
from typing import Optional

from drivesync.core.retry import RetryPolicy, Sleeper, is_retryable_status

logger = logging.getLogger("transfer")


class ContentFetcher:
    def __init__(self, downloader, policy: RetryPolicy, sleep: Sleeper = asyncio.sleep):
        self.downloader = downloader
        self.policy = policy
        self.sleep = sleep

    async def fetch(self, remote_file_id: str, display_name: str = "") -> Optional[bytes]:
        label = display_name or remote_file_id
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return await asyncio.to_thread(self.downloader.download, remote_file_id)
            except Exception as e:
                # Every download error is treated as transient.
                if attempt >= self.policy.max_attempts:
                    logger.error(
                        "download_gave_up name=%s id=%s attempts=%s error=%s",
                        label,
                        remote_file_id,
                        attempt,
                        e,
                    )
                    return None
                wait_ms = self.policy.delay_ms(attempt)
                logger.warning(
                    "download_retry name=%s error=%s retry=%s/%s wait_ms=%s",
                    label,
                    e,
                    attempt,
                    self.policy.max_attempts,
                    wait_ms,
                )
                await self.sleep(wait_ms / 1000)
        return None


class AssetUploader:
    def __init__(self, media, policy: RetryPolicy, sleep: Sleeper = asyncio.sleep):
        self.media = media
        self.policy = policy
        self.sleep = sleep

    async def _backoff(self, attempt: int, display_name: str, reason: str) -> bool:
        """Wait before the next attempt; False when no attempt is left."""
        if attempt >= self.policy.max_attempts:
            logger.error("upload_gave_up name=%s attempts=%s last=%s", display_name, attempt, reason)
            return False
        wait_ms = self.policy.delay_ms(attempt)
        logger.warning(
            "upload_retry name=%s reason=%s retry=%s/%s wait_ms=%s",
            display_name,
            reason,
            attempt,
            self.policy.max_attempts,
            wait_ms,
        )
        await self.sleep(wait_ms / 1000)
        return True

    async def upload(self, data: bytes, display_name: str, mime_type: str) -> Optional[str]:
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                res = await asyncio.to_thread(self.media.upload_asset, data, display_name, mime_type)
            except Exception as e:
                if not await self._backoff(attempt, display_name, f"error: {e}"):
                    return None
                continue

            status = res.status_code
            if 200 <= status < 300:
                try:
                    payload = res.json()
                except ValueError:
                    payload = None
                asset_id = payload.get("id") if isinstance(payload, dict) else None
                if not asset_id:
                    logger.error("upload_failed name=%s reason=response_without_id", display_name)
                    return None
                return str(asset_id)

            if is_retryable_status(status):
                if not await self._backoff(attempt, display_name, f"status {status}"):
                    return None
                continue

            text = (res.text or "").strip()
            logger.error("upload_failed name=%s status=%s body=%s", display_name, status, text[:200])
            return None
        return None
