from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RemoteFile(BaseModel):
    """One entry of a Drive folder listing snapshot."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    mime_type: str = Field(default="", alias="mimeType")
    checksum: str | None = Field(default=None, alias="md5Checksum")


class SyncRecord(BaseModel):
    remote_file_id: str
    display_name: str = ""
    remote_checksum: str | None = None
    local_asset_id: str | None = None
    last_synced_at: str | None = None
    target_type: str | None = None
    target_id: str | None = None
    sort_order: int | None = None


class DiffResult(BaseModel):
    to_delete: list[SyncRecord] = Field(default_factory=list)
    to_process: list[RemoteFile] = Field(default_factory=list)
    unchanged_count: int = 0


class SyncStats(BaseModel):
    unchanged: int = 0
    added: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    # Only non-zero when catalog linking is enabled.
    skipped: int = 0

    def summary_line(self) -> str:
        return " ".join(f"{k}={v}" for k, v in self.model_dump().items())


class CatalogArticle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    external_id: str = Field(alias="externalId")
    title: str = ""
    sku: str | None = None


class CatalogGroup(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    external_id: str = Field(alias="externalId")
    name: str = ""


class LinkTarget(BaseModel):
    target_type: Literal["article", "group"]
    target_id: str
    matched: str
    sort_order: int
