from typing import Any, Dict, Iterator, List
from urllib.parse import quote

import requests

ADMIN_SECRET_HEADER = "x-admin-secret"
CATALOG_PAGE_SIZE = 100

# (usage key, owner key, owner route, owner id field) in the asset detail response.
USAGE_LINKS = (
    ("usedInArticles", "article", "/admin/articles", "externalId"),
    ("usedInGroups", "group", "/admin/article-groups", "externalId"),
    ("usedInCategories", "category", "/admin/categories", "id"),
)


class MediaServiceClient:
    """Admin API of the catalog media service, authenticated by shared secret."""

    def __init__(self, base_url: str, admin_secret: str, timeout: int = 60):
        self.base_url = (base_url or "").rstrip("/")
        self.admin_secret = admin_secret or ""
        self.timeout = timeout

    def _headers(self, content_type: str | None = None) -> Dict[str, str]:
        headers = {ADMIN_SECRET_HEADER: self.admin_secret}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def upload_asset(self, data: bytes, file_name: str, mime_type: str) -> requests.Response:
        """POST the file as multipart form data; the caller classifies the response."""
        return requests.post(
            f"{self.base_url}/admin/media/upload",
            headers=self._headers(),
            files={"file": (file_name, data, mime_type)},
            timeout=self.timeout,
        )

    def asset_usage(self, asset_id: str) -> Dict[str, Any] | None:
        """Return the asset with its usedIn* link lists, or None when it does not exist."""
        res = requests.get(
            f"{self.base_url}/admin/media-assets/{quote(asset_id, safe='')}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if res.status_code == 404:
            return None
        if res.status_code >= 400:
            raise RuntimeError(f"asset_usage_failed_status_{res.status_code}: {asset_id}")
        body = res.json()
        return body if isinstance(body, dict) else {}

    def unlink(self, owner_path: str, link_id: str) -> None:
        res = requests.delete(
            f"{self.base_url}{owner_path}/media/{quote(link_id, safe='')}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        # 404: link already removed.
        if res.status_code >= 400 and res.status_code != 404:
            text = (res.text or "").strip()
            raise RuntimeError(f"unlink_failed_status_{res.status_code}: {text[:200]}")

    def detach_asset(self, usage: Dict[str, Any]) -> int:
        """Remove every article, group and category link of an asset. Returns the number removed."""
        removed = 0
        for key, owner_key, prefix, id_field in USAGE_LINKS:
            for link in usage.get(key) or []:
                owner = link.get(owner_key) or {}
                owner_id = owner.get(id_field)
                if not link.get("linkId") or not owner_id:
                    continue
                self.unlink(f"{prefix}/{quote(str(owner_id), safe='')}", str(link["linkId"]))
                removed += 1
        return removed

    def delete_asset(self, asset_id: str) -> bool:
        """Unlink and delete an asset. Returns False when it was already gone.

        The service refuses to delete assets that are still linked anywhere,
        so links are removed first.
        """
        usage = self.asset_usage(asset_id)
        if usage is None:
            return False
        self.detach_asset(usage)

        res = requests.delete(
            f"{self.base_url}/admin/media-assets/{quote(asset_id, safe='')}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if res.status_code == 404:
            return False
        if res.status_code >= 400:
            text = (res.text or "").strip()
            raise RuntimeError(f"delete_asset_failed_status_{res.status_code}: {text[:200]}")
        return True

    def link_asset(self, target_type: str, target_id: str, media_id: str, sort_order: int) -> requests.Response:
        if target_type == "article":
            path = f"/admin/articles/{quote(target_id, safe='')}/media"
        elif target_type == "group":
            path = f"/admin/article-groups/{quote(target_id, safe='')}/media"
        else:
            raise ValueError(f"unknown_target_type: {target_type}")
        return requests.post(
            f"{self.base_url}{path}",
            headers=self._headers("application/json"),
            json={"mediaId": media_id, "sortOrder": sort_order},
            timeout=self.timeout,
        )

    def _paginate(self, path: str, extra: Dict[str, Any] | None = None) -> Iterator[Dict[str, Any]]:
        offset = 0
        while True:
            params: Dict[str, Any] = {"limit": CATALOG_PAGE_SIZE, "offset": offset}
            params.update(extra or {})
            res = requests.get(f"{self.base_url}{path}", params=params, headers=self._headers(), timeout=self.timeout)
            if res.status_code >= 400:
                raise RuntimeError(f"catalog_list_failed_status_{res.status_code}: {path}")
            body_raw = res.json()
            body = body_raw if isinstance(body_raw, dict) else {}
            items_raw = body.get("data", []) or []
            items = [i for i in items_raw if isinstance(i, dict)] if isinstance(items_raw, list) else []
            yield from items

            offset += len(items_raw) if isinstance(items_raw, list) else 0
            total = int(body.get("total", 0) or 0)
            if not items or offset >= total:
                break

    def list_articles(self) -> List[Dict[str, Any]]:
        return list(self._paginate("/admin/articles"))

    def list_groups(self) -> List[Dict[str, Any]]:
        return list(self._paginate("/api/article-groups"))
