import asyncio
import logging
from typing import List

from drivesync.core.errors import RemoteListingError

from .models import RemoteFile

logger = logging.getLogger("listing")


class RemoteListingFetcher:
    """Materializes the complete Drive listing for one folder.

    ``lister`` provides ``iter_files(folder_id, mime_prefix, page_size)``
    yielding validated ``RemoteFile`` objects page by page.
    """

    def __init__(self, lister, folder_id: str, mime_prefix: str = "image/", page_size: int = 1000):
        self.lister = lister
        self.folder_id = folder_id
        self.mime_prefix = mime_prefix
        self.page_size = page_size

    def _collect(self) -> List[RemoteFile]:
        return list(self.lister.iter_files(self.folder_id, self.mime_prefix, page_size=self.page_size))

    async def fetch_all(self) -> List[RemoteFile]:
        try:
            files = await asyncio.to_thread(self._collect)
        except RemoteListingError:
            raise
        except Exception as e:
            raise RemoteListingError(f"list_files_failed: {e}") from e
        logger.info("remote_listing_fetched folder=%s files=%s", self.folder_id, len(files))
        return files
