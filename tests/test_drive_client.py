import pytest

from drivesync.core.errors import RemoteListingError
from drivesync.providers.google_drive import DriveClient, build_query, parse_remote_file


class _Request:
    def __init__(self, result):
        self.result = result

    def execute(self, num_retries=0):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class _Files:
    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []

    def list(self, **kwargs):
        self.calls.append(kwargs)
        return _Request(self.pages.pop(0))


class _Service:
    def __init__(self, pages):
        self._files = _Files(pages)

    def files(self):
        return self._files


def _client(pages) -> DriveClient:
    return DriveClient("", "", service=_Service(pages))


def test_build_query_restricts_to_folder_and_images():
    assert build_query("abc", "image/") == "'abc' in parents and trashed = false and (mimeType contains 'image/')"
    assert build_query("abc", "") == "'abc' in parents and trashed = false"


def test_parse_remote_file_reads_drive_field_names():
    f = parse_remote_file({"id": "f1", "name": "a.jpg", "mimeType": "image/png", "md5Checksum": "abc"})

    assert (f.id, f.name, f.mime_type, f.checksum) == ("f1", "a.jpg", "image/png", "abc")


def test_parse_remote_file_rejects_invalid_entries():
    with pytest.raises(RemoteListingError):
        parse_remote_file({"id": "", "name": "a.jpg"})
    with pytest.raises(RemoteListingError):
        parse_remote_file("not-a-dict")


def test_iter_files_follows_page_tokens():
    client = _client(
        [
            {"files": [{"id": "f1", "name": "1.jpg", "md5Checksum": "a"}], "nextPageToken": "p2"},
            {"files": [{"id": "f2", "name": "2.jpg", "md5Checksum": "b"}], "nextPageToken": "p3"},
            {"files": [{"id": "f3", "name": "3.jpg"}]},
        ]
    )

    files = list(client.iter_files("folder", page_size=1))

    assert [f.id for f in files] == ["f1", "f2", "f3"]
    assert files[2].checksum is None
    tokens = [c["pageToken"] for c in client._svc.files().calls]
    assert tokens == [None, "p2", "p3"]
    assert all(c["pageSize"] == 1 for c in client._svc.files().calls)


def test_iter_files_failure_on_later_page_is_fatal():
    client = _client(
        [
            {"files": [{"id": "f1", "name": "1.jpg"}], "nextPageToken": "p2"},
            ConnectionError("quota exceeded"),
        ]
    )

    with pytest.raises(RemoteListingError, match="list_files_failed"):
        list(client.iter_files("folder"))


def test_iter_files_requires_folder_id():
    with pytest.raises(RemoteListingError):
        list(_client([]).iter_files(""))


def test_missing_credentials_is_reported():
    client = DriveClient("", "")

    with pytest.raises(RuntimeError, match="drive_credentials_missing"):
        client._service()


class _MediaFiles:
    def get_media(self, fileId=None, supportsAllDrives=None):
        return ("media-request", fileId)


class _MediaService:
    def files(self):
        return _MediaFiles()


def test_download_leaves_retries_to_the_caller(monkeypatch):
    retries_seen = []

    class FakeDownload:
        def __init__(self, fd, request):
            self.fd = fd
            self.chunks = [b"ab", b"cd"]

        def next_chunk(self, num_retries=0):
            retries_seen.append(num_retries)
            self.fd.write(self.chunks.pop(0))
            return None, not self.chunks

    monkeypatch.setattr("googleapiclient.http.MediaIoBaseDownload", FakeDownload)
    client = DriveClient("", "", num_retries=3, service=_MediaService())

    assert client.download("f1") == b"abcd"
    assert retries_seen == [0, 0]
