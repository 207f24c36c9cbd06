import io
from typing import Any, Dict, Iterator, Optional

from pydantic import ValidationError

from drivesync.core.errors import RemoteListingError
from drivesync.sync.models import RemoteFile

SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]
TOKEN_URI = "https://oauth2.googleapis.com/token"
LIST_FIELDS = "nextPageToken, files(id,name,mimeType,md5Checksum)"


def build_query(folder_id: str, mime_prefix: str) -> str:
    parts = [f"'{folder_id}' in parents", "trashed = false"]
    if mime_prefix:
        parts.append(f"(mimeType contains '{mime_prefix}')")
    return " and ".join(parts)


def parse_remote_file(raw: Any) -> RemoteFile:
    if not isinstance(raw, dict):
        raise RemoteListingError(f"invalid_listing_entry: {raw!r}")
    try:
        return RemoteFile.model_validate(raw)
    except ValidationError as e:
        raise RemoteListingError(f"invalid_listing_entry id={raw.get('id')!r}: {e.errors()}") from e


class DriveClient:
    """Read-only Drive v3 access through a service account."""

    def __init__(self, client_email: str, private_key: str, num_retries: int = 3, service=None):
        self.client_email = client_email or ""
        self.private_key = private_key or ""
        self.num_retries = num_retries
        self._svc = service

    def _service(self):
        if self._svc is not None:
            return self._svc
        if not self.client_email or not self.private_key:
            raise RuntimeError("drive_credentials_missing")

        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        creds = service_account.Credentials.from_service_account_info(
            {
                "client_email": self.client_email,
                "private_key": self.private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )
        self._svc = build("drive", "v3", credentials=creds, cache_discovery=False)
        return self._svc

    def list_page(
        self,
        folder_id: str,
        mime_prefix: str = "image/",
        page_token: Optional[str] = None,
        page_size: int = 1000,
    ) -> Dict[str, Any]:
        body = (
            self._service()
            .files()
            .list(
                q=build_query(folder_id, mime_prefix),
                fields=LIST_FIELDS,
                pageSize=page_size,
                pageToken=page_token,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            )
            .execute(num_retries=self.num_retries)
        )
        return body if isinstance(body, dict) else {}

    def iter_files(self, folder_id: str, mime_prefix: str = "image/", page_size: int = 1000) -> Iterator[RemoteFile]:
        """Yield every file of the folder, following page tokens until exhausted."""
        if not folder_id:
            raise RemoteListingError("drive_folder_id_missing")

        page_token: Optional[str] = None
        while True:
            try:
                body = self.list_page(folder_id, mime_prefix, page_token=page_token, page_size=page_size)
            except RemoteListingError:
                raise
            except Exception as e:
                raise RemoteListingError(f"list_files_failed: {e}") from e

            files = body.get("files") or []
            if not isinstance(files, list):
                raise RemoteListingError("invalid_listing_page: files is not a list")
            for raw in files:
                yield parse_remote_file(raw)

            next_page_token = body.get("nextPageToken")
            page_token = str(next_page_token) if next_page_token else None
            if not page_token:
                break

    def download(self, file_id: str) -> bytes:
        from googleapiclient.http import MediaIoBaseDownload

        request = self._service().files().get_media(fileId=file_id, supportsAllDrives=True)
        buf = io.BytesIO()
        downloader = MediaIoBaseDownload(buf, request)
        done = False
        while not done:
            # ContentFetcher owns the attempt bound for downloads.
            _, done = downloader.next_chunk(num_retries=0)
        return buf.getvalue()
